"""
Confluence — Chart Pattern Detectors

Rule-based detection of structural chart patterns from swing highs/lows.
Deterministic analysis — no ML required.

Families (run in this order by ``detect_all``):
  Head & Shoulders (& Inverse), Double/Triple Top & Bottom,
  Ascending/Descending/Symmetrical Triangle & Rectangle,
  Rising/Falling Wedge, Flag/Pennant, Cup & Handle, Rounding Top/Bottom

Each detector returns ``PatternResult`` records carrying status, reliability
(0–100), base significance (0–100) and the pattern's index span inside the
candle window it was given.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import structlog

from confluence.errors import warn_insufficient_data
from confluence.models import (
    Candle,
    Direction,
    PatternComponent,
    PatternResult,
    PatternStatus,
    PatternType,
    PeakValley,
)

log = structlog.get_logger(__name__)

MIN_CANDLES = 20
# Price within this fraction of the breakout level counts as "breakout expected"
_NEAR_BREAKOUT = 0.03
# Close within this fraction of the range height from the midpoint has no bias
_RANGE_MID_BAND = 0.05


class PatternDetectors:
    """Swing-based chart pattern detectors.

    Usage:
        detectors = PatternDetectors()
        patterns = detectors.detect_all(candles)
    """

    def __init__(self, swing_order: int = 3):
        self.swing_order = swing_order

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def detect_all(self, candles: Sequence[Candle], timeframe: Optional[str] = None) -> list[PatternResult]:
        """Run every detector family and concatenate results in family order."""
        if len(candles) < MIN_CANDLES:
            warn_insufficient_data("pattern_detectors", timeframe, len(candles), MIN_CANDLES)
            return []

        pv = self.find_peaks_and_valleys(candles)
        patterns: list[PatternResult] = []
        patterns.extend(self.find_head_and_shoulders(candles, pv))
        patterns.extend(self.find_double_tops_and_bottoms(candles, pv))
        patterns.extend(self.find_triangles(candles, pv))
        patterns.extend(self.find_wedges(candles, pv))
        patterns.extend(self.find_flags_and_pennants(candles, pv))
        patterns.extend(self.find_cup_and_handle(candles, pv))
        patterns.extend(self.find_rounding_patterns(candles, pv))

        log.debug(
            "patterns.detected",
            timeframe=timeframe,
            candles=len(candles),
            swings=len(pv),
            patterns=len(patterns),
        )
        return patterns

    def find_peaks_and_valleys(self, candles: Sequence[Candle]) -> list[PeakValley]:
        """Swing highs (peaks) and swing lows (valleys), ordered by index."""
        h, l, _, _ = _arrays(candles)
        points = [
            PeakValley(index=i, price=v, timestamp=candles[i].timestamp, kind="peak")
            for i, v in self._find_swings(h, mode="high", order=self.swing_order)
        ]
        points += [
            PeakValley(index=i, price=v, timestamp=candles[i].timestamp, kind="valley")
            for i, v in self._find_swings(l, mode="low", order=self.swing_order)
        ]
        points.sort(key=lambda p: (p.index, p.kind))
        return points

    # ──────────────────────────────────────────
    # Reversal Families
    # ──────────────────────────────────────────

    def find_head_and_shoulders(self, candles, pv) -> list[PatternResult]:
        """Head & Shoulders and its inverse; most recent of each."""
        _, _, c, v = _arrays(candles)
        peaks = _of_kind(pv, "peak")
        valleys = _of_kind(pv, "valley")
        patterns = []

        for j in range(len(peaks) - 1, 1, -1):
            ls, hd, rs = peaks[j - 2], peaks[j - 1], peaks[j]
            if hd.price <= ls.price or hd.price <= rs.price:
                continue
            # Shoulders ~equal (within 3%)
            if abs(ls.price - rs.price) / max(ls.price, 0.01) > 0.03:
                continue
            neckline = float(np.min(c[ls.index:rs.index + 1]))
            height = hd.price - neckline
            patterns.append(self._build(
                PatternType.HEAD_AND_SHOULDERS, Direction.BEARISH, 82.0, candles, v,
                key_points=[ls, hd, rs], breakout_level=neckline, height=height,
                stop_loss=hd.price, target=neckline - height, open_structure=False,
                description=(
                    f"H&S: LS={ls.price:.2f}, Head={hd.price:.2f}, RS={rs.price:.2f}, "
                    f"Neckline={neckline:.2f}"
                ),
            ))
            break

        for j in range(len(valleys) - 1, 1, -1):
            ls, hd, rs = valleys[j - 2], valleys[j - 1], valleys[j]
            if hd.price >= ls.price or hd.price >= rs.price:
                continue
            if abs(ls.price - rs.price) / max(ls.price, 0.01) > 0.03:
                continue
            neckline = float(np.max(c[ls.index:rs.index + 1]))
            height = neckline - hd.price
            patterns.append(self._build(
                PatternType.INVERSE_HEAD_AND_SHOULDERS, Direction.BULLISH, 82.0, candles, v,
                key_points=[ls, hd, rs], breakout_level=neckline, height=height,
                stop_loss=hd.price, target=neckline + height, open_structure=False,
                description=(
                    f"iH&S: LS={ls.price:.2f}, Head={hd.price:.2f}, RS={rs.price:.2f}, "
                    f"Neckline={neckline:.2f}"
                ),
            ))
            break

        return patterns

    def find_double_tops_and_bottoms(self, candles, pv) -> list[PatternResult]:
        """Double and triple tops/bottoms at similar levels (2% tolerance)."""
        _, _, c, v = _arrays(candles)
        patterns = []

        for kind, direction in (("peak", Direction.BEARISH), ("valley", Direction.BULLISH)):
            points = _of_kind(pv, kind)
            is_top = kind == "peak"

            # Triple first: three consecutive swings at one level
            triple = None
            for j in range(len(points) - 1, 1, -1):
                trio = points[j - 2:j + 1]
                base = trio[0].price
                if all(abs(p.price - base) / max(base, 0.01) < 0.02 for p in trio) and \
                   trio[-1].index - trio[0].index >= 10:
                    triple = trio
                    break

            if triple is not None:
                first, last = triple[0], triple[-1]
                neckline = _neckline(c, first.index, last.index, is_top)
                level = max(p.price for p in triple) if is_top else min(p.price for p in triple)
                height = abs(level - neckline)
                patterns.append(self._build(
                    PatternType.TRIPLE_TOP if is_top else PatternType.TRIPLE_BOTTOM,
                    direction, 76.0, candles, v,
                    key_points=list(triple), breakout_level=neckline, height=height,
                    stop_loss=level,
                    target=neckline - height if is_top else neckline + height,
                    open_structure=False,
                    description=f"Triple {'top' if is_top else 'bottom'} at ~{first.price:.2f}, neckline ~{neckline:.2f}",
                ))
                continue

            for j in range(len(points) - 1, 0, -1):
                first, second = points[j - 1], points[j]
                if second.index - first.index < 5:
                    continue
                if abs(second.price - first.price) >= first.price * 0.02:
                    continue
                neckline = _neckline(c, first.index, second.index, is_top)
                level = max(first.price, second.price) if is_top else min(first.price, second.price)
                height = abs(level - neckline)
                patterns.append(self._build(
                    PatternType.DOUBLE_TOP if is_top else PatternType.DOUBLE_BOTTOM,
                    direction, 72.0, candles, v,
                    key_points=[first, second], breakout_level=neckline, height=height,
                    stop_loss=level,
                    target=neckline - height if is_top else neckline + height,
                    open_structure=False,
                    description=f"Double {'top' if is_top else 'bottom'} at ~{first.price:.2f}, neckline ~{neckline:.2f}",
                ))
                break

        return patterns

    # ──────────────────────────────────────────
    # Consolidation Families
    # ──────────────────────────────────────────

    def find_triangles(self, candles, pv) -> list[PatternResult]:
        """Ascending, Descending, Symmetrical triangles and Rectangles."""
        _, _, c, v = _arrays(candles)
        peaks = _of_kind(pv, "peak")[-3:]
        valleys = _of_kind(pv, "valley")[-3:]
        if len(peaks) < 2 or len(valleys) < 2:
            return []

        high_vals = [p.price for p in peaks]
        low_vals = [p.price for p in valleys]
        avg_high = float(np.mean(high_vals))
        avg_low = float(np.mean(low_vals))

        highs_flat = all(abs(x - avg_high) / max(avg_high, 0.01) < 0.015 for x in high_vals)
        lows_flat = all(abs(x - avg_low) / max(avg_low, 0.01) < 0.015 for x in low_vals)
        lows_rising = low_vals[-1] > low_vals[0]
        highs_falling = high_vals[-1] < high_vals[0]
        key_points = sorted(peaks + valleys, key=lambda p: p.index)
        zone = (float(low_vals[-1]), float(high_vals[-1]))

        # Rectangle — flat top and flat bottom; bias from price position
        if highs_flat and lows_flat:
            mid = (avg_high + avg_low) / 2
            height = avg_high - avg_low
            if abs(c[-1] - mid) <= height * _RANGE_MID_BAND:
                return [self._build(
                    PatternType.RECTANGLE, Direction.NEUTRAL, 58.0, candles, v,
                    key_points=key_points, breakout_level=avg_high, height=height,
                    stop_loss=None, target=None,
                    open_structure=True, zone=(avg_low, avg_high),
                    description=f"Rectangle range {avg_low:.2f} - {avg_high:.2f}, price mid-range",
                )]
            bullish = c[-1] > mid
            return [self._build(
                PatternType.RECTANGLE, Direction.BULLISH if bullish else Direction.BEARISH, 58.0, candles, v,
                key_points=key_points,
                breakout_level=avg_high if bullish else avg_low, height=height,
                stop_loss=avg_low if bullish else avg_high,
                target=avg_high + height if bullish else avg_low - height,
                open_structure=True, zone=(avg_low, avg_high),
                description=f"Rectangle range {avg_low:.2f} - {avg_high:.2f}",
            )]

        # Ascending Triangle — flat top, rising lows
        if highs_flat and lows_rising:
            top = float(high_vals[-1])
            height = top - low_vals[0]
            return [self._build(
                PatternType.ASCENDING_TRIANGLE, Direction.BULLISH, 70.0, candles, v,
                key_points=key_points, breakout_level=top, height=height,
                stop_loss=float(low_vals[-1]), target=top + height,
                open_structure=True, zone=zone,
                description=f"Ascending triangle with resistance ~{top:.2f}",
            )]

        # Descending Triangle — flat bottom, falling highs
        if lows_flat and highs_falling:
            floor = float(low_vals[-1])
            height = high_vals[0] - floor
            return [self._build(
                PatternType.DESCENDING_TRIANGLE, Direction.BEARISH, 70.0, candles, v,
                key_points=key_points, breakout_level=floor, height=height,
                stop_loss=float(high_vals[-1]), target=floor - height,
                open_structure=True, zone=zone,
                description=f"Descending triangle with support ~{floor:.2f}",
            )]

        # Symmetrical Triangle — converging, direction unresolved
        if highs_falling and lows_rising:
            height = high_vals[0] - low_vals[0]
            return [self._build(
                PatternType.SYMMETRICAL_TRIANGLE, Direction.NEUTRAL, 60.0, candles, v,
                key_points=key_points, breakout_level=float(high_vals[-1]), height=height,
                stop_loss=None, target=None, open_structure=True, zone=zone,
                description="Symmetrical triangle — breakout direction unclear, watch for resolution",
            )]

        return []

    def find_wedges(self, candles, pv) -> list[PatternResult]:
        """Rising (bearish) and Falling (bullish) wedges."""
        _, _, _, v = _arrays(candles)
        peaks = _of_kind(pv, "peak")[-3:]
        valleys = _of_kind(pv, "valley")[-3:]
        if len(peaks) < 2 or len(valleys) < 2:
            return []

        high_vals = [p.price for p in peaks]
        low_vals = [p.price for p in valleys]
        high_spread = high_vals[-1] - high_vals[0]
        low_spread = low_vals[-1] - low_vals[0]
        key_points = sorted(peaks + valleys, key=lambda p: p.index)
        height = high_vals[0] - low_vals[0]
        zone = (float(low_vals[-1]), float(high_vals[-1]))

        # Rising Wedge — both rising, lows climbing faster (converging)
        if high_spread > 0 and low_spread > 0 and abs(high_spread) < abs(low_spread):
            support = float(low_vals[-1])
            return [self._build(
                PatternType.RISING_WEDGE, Direction.BEARISH, 68.0, candles, v,
                key_points=key_points, breakout_level=support, height=height,
                stop_loss=float(max(high_vals)), target=support - height,
                open_structure=True, zone=zone,
                description="Rising wedge — bearish reversal, expect breakdown",
            )]

        # Falling Wedge — both falling, highs dropping faster
        if high_spread < 0 and low_spread < 0 and abs(low_spread) < abs(high_spread):
            resistance = float(high_vals[-1])
            return [self._build(
                PatternType.FALLING_WEDGE, Direction.BULLISH, 68.0, candles, v,
                key_points=key_points, breakout_level=resistance, height=height,
                stop_loss=float(min(low_vals)), target=resistance + height,
                open_structure=True, zone=zone,
                description="Falling wedge — bullish reversal, expect breakout",
            )]

        return []

    def find_flags_and_pennants(self, candles, pv) -> list[PatternResult]:
        """Sharp pole in bars [-20:-10] then tight consolidation in [-10:]."""
        h, l, c, v = _arrays(candles)
        if len(c) < 20:
            return []

        pole_change = (c[-10] - c[-20]) / max(abs(c[-20]), 0.01)
        pole_range = float(np.max(h[-20:-10]) - np.min(l[-20:-10]))
        # Boundaries exclude the latest bar so it can close beyond them
        flag_high = float(np.max(h[-10:-1]))
        flag_low = float(np.min(l[-10:-1]))
        if pole_range == 0 or flag_high - flag_low >= pole_range * 0.40:
            return []
        if abs(pole_change) <= 0.05:
            return []

        # Converging highs and lows make it a pennant
        converging = h[-2] < h[-10] and l[-2] > l[-10]
        pattern_type = PatternType.PENNANT if converging else PatternType.FLAG
        bullish = pole_change > 0
        start = len(c) - 20
        key_points = [p for p in pv if p.index >= start]

        return [self._build(
            pattern_type, Direction.BULLISH if bullish else Direction.BEARISH, 72.0, candles, v,
            key_points=key_points,
            breakout_level=flag_high if bullish else flag_low,
            height=pole_range,
            stop_loss=flag_low if bullish else flag_high,
            target=flag_high + pole_range if bullish else flag_low - pole_range,
            open_structure=True, zone=(flag_low, flag_high),
            start_index=start, end_index=len(c) - 1,
            description=(
                f"{'Bull' if bullish else 'Bear'} {pattern_type.value} — "
                f"{pole_change:.1%} pole, tight consolidation"
            ),
        )]

    def find_cup_and_handle(self, candles, pv) -> list[PatternResult]:
        """Cup & Handle: two similar lips around a U-shaped base, then a shallow handle."""
        _, l, c, v = _arrays(candles)
        if len(c) < 40:
            return []

        peaks = _of_kind(pv, "peak")
        for j in range(len(peaks) - 1, 0, -1):
            left, right = peaks[j - 1], peaks[j]
            if right.index - left.index < 15:
                continue
            # Right lip near or above left lip
            if right.price < left.price * 0.97:
                continue
            if right.index >= len(c) - 2:
                continue

            bottom_offset = int(np.argmin(l[left.index:right.index + 1]))
            bottom_i = left.index + bottom_offset
            bottom = float(l[bottom_i])
            depth = left.price - bottom
            if depth <= left.price * 0.03:
                continue

            handle_low = float(np.min(l[right.index + 1:]))
            # Handle must hold the upper half of the cup
            if handle_low <= bottom + depth / 2:
                continue

            rim = float(max(left.price, right.price))
            base = PeakValley(index=bottom_i, price=bottom, timestamp=candles[bottom_i].timestamp, kind="valley")
            return [self._build(
                PatternType.CUP_AND_HANDLE, Direction.BULLISH, 76.0, candles, v,
                key_points=[left, base, right],
                breakout_level=rim, height=depth,
                stop_loss=handle_low, target=rim + depth,
                open_structure=True, zone=(handle_low, rim),
                start_index=left.index, end_index=len(c) - 1,
                description=f"Cup & handle — cup depth {depth:.2f}, rim ~{rim:.2f}",
            )]
        return []

    def find_rounding_patterns(self, candles, pv) -> list[PatternResult]:
        """Rounding bottom/top from a quadratic fit of closes."""
        _, _, c, v = _arrays(candles)
        for window in (60, 40, 30):
            if len(c) < window:
                continue
            segment = c[-window:]
            x = np.arange(window, dtype=float)
            coeffs = np.polyfit(x, segment, 2)
            a, b = coeffs[0], coeffs[1]
            if a == 0:
                continue
            vertex = -b / (2 * a)
            if not window * 0.25 <= vertex <= window * 0.75:
                continue
            fitted = np.polyval(coeffs, x)
            ss_res = float(np.sum((segment - fitted) ** 2))
            ss_tot = float(np.sum((segment - segment.mean()) ** 2))
            if ss_tot == 0 or 1 - ss_res / ss_tot < 0.6:
                continue

            start = len(c) - window
            is_bottom = a > 0
            rim = float(max(segment[0], segment[-1])) if is_bottom else float(min(segment[0], segment[-1]))
            extreme = float(segment.min()) if is_bottom else float(segment.max())
            height = abs(rim - extreme)
            if height <= 0:
                continue

            vertex_i = start + int(round(vertex))
            key_points = [PeakValley(
                index=vertex_i, price=float(c[vertex_i]),
                timestamp=candles[vertex_i].timestamp,
                kind="valley" if is_bottom else "peak",
            )]
            return [self._build(
                PatternType.ROUNDING_BOTTOM if is_bottom else PatternType.ROUNDING_TOP,
                Direction.BULLISH if is_bottom else Direction.BEARISH, 65.0, candles, v,
                key_points=key_points, breakout_level=rim, height=height,
                stop_loss=extreme,
                target=rim + height if is_bottom else rim - height,
                open_structure=True,
                start_index=start, end_index=len(c) - 1,
                description=f"Rounding {'bottom' if is_bottom else 'top'} over {window} bars, rim ~{rim:.2f}",
            )]
        return []

    # ──────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────

    @staticmethod
    def _find_swings(data: np.ndarray, mode: str = "high", order: int = 5) -> list[tuple[int, float]]:
        """Find swing highs or lows using a rolling window comparison.

        Strict against the left side, so a plateau yields one swing at its
        first bar and a flat series yields none.
        """
        swings = []
        for i in range(order, len(data) - order):
            if mode == "high":
                if all(data[i] > data[i - j] for j in range(1, order + 1)) and \
                   all(data[i] >= data[i + j] for j in range(1, order + 1)):
                    swings.append((i, float(data[i])))
            else:
                if all(data[i] < data[i - j] for j in range(1, order + 1)) and \
                   all(data[i] <= data[i + j] for j in range(1, order + 1)):
                    swings.append((i, float(data[i])))
        return swings

    def _build(
        self,
        pattern_type: PatternType,
        direction: Direction,
        base_reliability: float,
        candles: Sequence[Candle],
        volumes: np.ndarray,
        *,
        key_points: list[PeakValley],
        breakout_level: float,
        height: float,
        stop_loss: Optional[float],
        target: Optional[float],
        open_structure: bool,
        description: str,
        zone: Optional[tuple[float, float]] = None,
        start_index: Optional[int] = None,
        end_index: Optional[int] = None,
    ) -> PatternResult:
        """Assemble a PatternResult: status, volume character, scores."""
        last_index = len(candles) - 1
        close = candles[-1].close
        start = start_index if start_index is not None else min(p.index for p in key_points)
        end = end_index if end_index is not None else max(p.index for p in key_points)

        status = _status(direction, close, breakout_level, stop_loss, open_structure)
        volume_pattern = _volume_pattern(volumes, start, end)

        reliability = base_reliability
        if status == PatternStatus.CONFIRMED and volume_pattern == "expanding":
            reliability += 5
        elif status == PatternStatus.FAILED:
            reliability -= 20

        breakout_expected = (
            status == PatternStatus.FORMING
            and breakout_level > 0
            and abs(close - breakout_level) / breakout_level <= _NEAR_BREAKOUT
        )

        return PatternResult(
            pattern_type=pattern_type,
            status=status,
            direction=direction,
            reliability=reliability,
            significance=_significance(height, close, start, end),
            component=PatternComponent(
                start_index=start,
                end_index=min(end, last_index),
                key_points=key_points,
                pattern_height=float(height),
                breakout_level=float(breakout_level),
                volume_pattern=volume_pattern,
            ),
            price_target=float(target) if target is not None else None,
            stop_loss=float(stop_loss) if stop_loss is not None else None,
            breakout_expected=breakout_expected,
            breakout_direction=direction if direction != Direction.NEUTRAL else None,
            probable_breakout_zone=zone if status == PatternStatus.FORMING else None,
            description=description,
            trading_implication=_implication(direction, status, breakout_level),
        )


# ──────────────────────────────────────────────
# Module Helpers
# ──────────────────────────────────────────────

def _arrays(candles: Sequence[Candle]) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    h = np.array([b.high for b in candles], dtype=float)
    l = np.array([b.low for b in candles], dtype=float)
    c = np.array([b.close for b in candles], dtype=float)
    v = np.array([b.volume for b in candles], dtype=float)
    return h, l, c, v


def _of_kind(pv: Sequence[PeakValley], kind: str) -> list[PeakValley]:
    return [p for p in pv if p.kind == kind]


def _neckline(c: np.ndarray, start: int, end: int, is_top: bool) -> float:
    """Lowest close between two tops, or highest close between two bottoms."""
    window = c[start:end + 1]
    return float(np.min(window) if is_top else np.max(window))


def _status(
    direction: Direction,
    close: float,
    breakout_level: float,
    stop_loss: Optional[float],
    open_structure: bool,
) -> PatternStatus:
    if direction == Direction.BULLISH:
        if close > breakout_level:
            return PatternStatus.CONFIRMED
        if stop_loss is not None and close < stop_loss:
            return PatternStatus.FAILED
    elif direction == Direction.BEARISH:
        if close < breakout_level:
            return PatternStatus.CONFIRMED
        if stop_loss is not None and close > stop_loss:
            return PatternStatus.FAILED
    return PatternStatus.FORMING if open_structure else PatternStatus.COMPLETED


def _volume_pattern(volumes: np.ndarray, start: int, end: int) -> str:
    """Compare average volume in the second half of the pattern to the first."""
    segment = volumes[start:end + 1]
    if len(segment) < 4:
        return "insufficient"
    mid = len(segment) // 2
    first, second = float(segment[:mid].mean()), float(segment[mid:].mean())
    if first <= 0:
        return "insufficient"
    if second < first * 0.8:
        return "declining"
    if second > first * 1.2:
        return "expanding"
    return "steady"


def _significance(height: float, price: float, start: int, end: int) -> float:
    """Base significance: relative height (up to 50) plus span (up to 20) over a 30 floor."""
    relative = abs(height) / price if price > 0 else 0.0
    return min(100.0, 30.0 + min(50.0, relative * 500.0) + min(20.0, (end - start) / 3.0))


def _implication(direction: Direction, status: PatternStatus, breakout_level: float) -> str:
    if status == PatternStatus.FAILED:
        return "Pattern failed — stand aside or trade the opposite break with caution."
    if direction == Direction.BULLISH:
        if status == PatternStatus.CONFIRMED:
            return f"Bullish breakout above {breakout_level:.2f} confirmed; long bias."
        return f"Watch for a close above {breakout_level:.2f} to confirm upside."
    if direction == Direction.BEARISH:
        if status == PatternStatus.CONFIRMED:
            return f"Bearish breakdown below {breakout_level:.2f} confirmed; short bias."
        return f"Watch for a close below {breakout_level:.2f} to confirm downside."
    return "Direction unresolved — wait for a breakout from the range."
