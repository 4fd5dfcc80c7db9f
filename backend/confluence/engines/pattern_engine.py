"""
Confluence — Multi-Timeframe Pattern Engine

Ranks chart patterns per timeframe with recency weighting, then merges the
per-timeframe verdicts into one directional signal with a 0–100 strength.

Per timeframe:
  1. Keep the most recent ``pattern_window`` candles
  2. Run every detector family, concatenating results
  3. Recency pipeline: exponential decay → confirmed bonus → forming bonus
  4. Stable sort by reliability × significance; the first is dominant
  5. Bullish vs bearish weighted sums over the top N decide the signal

Across timeframes:
  Weighted vote (shorter timeframes weigh more), additive strength bonuses,
  and a narrative description.
"""

from __future__ import annotations

import math
from typing import Mapping, Optional, Sequence

import structlog

from confluence.config import Settings, get_settings
from confluence.engines.pattern_detectors import PatternDetectors
from confluence.models import (
    Candle,
    ComprehensivePatternAnalysis,
    Direction,
    PatternResult,
    PatternStatus,
    Timeframe,
    TimeframePatternAnalysis,
)

log = structlog.get_logger(__name__)

_UNKNOWN_TIMEFRAME_WEIGHT = 1.0


# ──────────────────────────────────────────────
# Recency Pipeline
# ──────────────────────────────────────────────

def decay_significance(pattern: PatternResult, last_index: int, rate: float) -> PatternResult:
    """Scale significance by ``exp(-rate * bars_since_pattern_end)``."""
    distance = last_index - pattern.component.end_index
    factor = math.exp(-rate * distance)
    return pattern.model_copy(update={"significance": pattern.significance * factor})


def apply_confirmed_bonus(pattern: PatternResult, bonus: float) -> PatternResult:
    if pattern.status != PatternStatus.CONFIRMED:
        return pattern
    return pattern.model_copy(update={"significance": pattern.significance * bonus})


def apply_forming_bonus(
    pattern: PatternResult,
    last_index: int,
    bonus: float,
    max_distance: int,
) -> PatternResult:
    """Boost forming patterns that expect a breakout and ended recently."""
    distance = last_index - pattern.component.end_index
    if pattern.status == PatternStatus.FORMING and pattern.breakout_expected and distance < max_distance:
        return pattern.model_copy(update={"significance": pattern.significance * bonus})
    return pattern


def rank_patterns(patterns: Sequence[PatternResult]) -> list[PatternResult]:
    """Sort by reliability × significance, descending; ties keep input order."""
    return sorted(patterns, key=lambda p: p.weighted_score, reverse=True)


def directional_signal(
    ranked: Sequence[PatternResult],
    top_n: int = 10,
    ratio: float = 1.5,
) -> Direction:
    """Bullish vs bearish weighted sums over the ``top_n`` ranked patterns."""
    bullish = 0.0
    bearish = 0.0
    for pattern in ranked[:top_n]:
        if pattern.direction == Direction.BULLISH:
            bullish += pattern.weighted_score
        elif pattern.direction == Direction.BEARISH:
            bearish += pattern.weighted_score

    if bullish > bearish * ratio:
        return Direction.BULLISH
    if bearish > bullish * ratio:
        return Direction.BEARISH
    if bullish > bearish:
        return Direction.BULLISH
    if bearish > bullish:
        return Direction.BEARISH
    return Direction.NEUTRAL


class PatternEngine:
    """Recency-weighted multi-timeframe pattern combiner.

    Usage:
        engine = PatternEngine()
        result = engine.analyze_multi_timeframe_patterns(weekly, daily, hourly)

    ``timeframe_weights`` overrides the configured per-timeframe vote weights.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        detectors: Optional[PatternDetectors] = None,
        timeframe_weights: Optional[Mapping[str, float]] = None,
    ):
        self._settings = settings or get_settings()
        self._detectors = detectors or PatternDetectors()
        weights = timeframe_weights if timeframe_weights is not None else self._settings.pattern_timeframe_weights
        # Keys outside Timeframe are kept; they never match an analysis
        self.timeframe_weights = {
            (k.value if isinstance(k, Timeframe) else str(k)): float(w) for k, w in weights.items()
        }

    # ──────────────────────────────────────────
    # Per-Timeframe
    # ──────────────────────────────────────────

    def analyze_all_patterns(
        self,
        candles: Sequence[Candle],
        timeframe: Timeframe | str,
    ) -> TimeframePatternAnalysis:
        """Detect, recency-weight and rank patterns for one timeframe."""
        tf = Timeframe(timeframe)
        window = list(candles[-self._settings.pattern_window:])
        raw = self._detectors.detect_all(window, timeframe=tf.value)
        return self.rank_timeframe(raw, tf, last_index=len(window) - 1)

    def rank_timeframe(
        self,
        patterns: Sequence[PatternResult],
        timeframe: Timeframe | str,
        last_index: int,
    ) -> TimeframePatternAnalysis:
        """Apply the recency pipeline to detector output, then rank and vote."""
        s = self._settings
        adjusted = []
        for pattern in patterns:
            pattern = decay_significance(pattern, last_index, s.pattern_decay_rate)
            pattern = apply_confirmed_bonus(pattern, s.confirmed_pattern_bonus)
            pattern = apply_forming_bonus(
                pattern, last_index, s.forming_pattern_bonus, s.forming_bonus_max_distance,
            )
            adjusted.append(pattern)

        ranked = rank_patterns(adjusted)
        dominant = ranked[0] if ranked else None
        signal = directional_signal(ranked, s.pattern_signal_top_n, s.pattern_signal_ratio)

        log.debug(
            "pattern.ranked",
            timeframe=Timeframe(timeframe).value,
            patterns=len(ranked),
            dominant=dominant.pattern_type.value if dominant else None,
            signal=signal.value,
        )
        return TimeframePatternAnalysis(
            timeframe=Timeframe(timeframe),
            patterns=ranked,
            dominant_pattern=dominant,
            pattern_signal=signal,
        )

    # ──────────────────────────────────────────
    # Cross-Timeframe
    # ──────────────────────────────────────────

    def combine_pattern_analyses(
        self,
        analyses: Sequence[TimeframePatternAnalysis],
    ) -> ComprehensivePatternAnalysis:
        """Weighted vote across timeframes plus a 0–100 strength score."""
        weights = self.timeframe_weights
        bullish = 0.0
        bearish = 0.0
        for analysis in analyses:
            weight = weights.get(analysis.timeframe.value, _UNKNOWN_TIMEFRAME_WEIGHT)
            if analysis.pattern_signal == Direction.BULLISH:
                bullish += weight
            elif analysis.pattern_signal == Direction.BEARISH:
                bearish += weight

        ratio = self._settings.combined_signal_ratio
        if bullish > bearish * ratio:
            combined = Direction.BULLISH
        elif bearish > bullish * ratio:
            combined = Direction.BEARISH
        elif bullish > bearish:
            combined = Direction.BULLISH
        elif bearish > bullish:
            combined = Direction.BEARISH
        else:
            combined = Direction.NEUTRAL

        by_tf = {a.timeframe: a for a in analyses}
        strength = self._signal_strength(analyses, by_tf, combined, bullish, bearish)
        description = self._describe(by_tf, combined, strength)

        log.info(
            "pattern.combined",
            timeframes=[a.timeframe.value for a in analyses],
            signal=combined.value,
            strength=round(strength, 2),
        )
        return ComprehensivePatternAnalysis(
            timeframe_analyses=list(analyses),
            combined_signal=combined,
            signal_strength=strength,
            description=description,
        )

    def analyze_multi_timeframe_patterns(
        self,
        weekly: Sequence[Candle],
        daily: Sequence[Candle],
        hourly: Sequence[Candle],
    ) -> ComprehensivePatternAnalysis:
        """Analyze weekly, daily and hourly candles and combine the results."""
        return self.combine_pattern_analyses([
            self.analyze_all_patterns(weekly, Timeframe.WEEKLY),
            self.analyze_all_patterns(daily, Timeframe.DAILY),
            self.analyze_all_patterns(hourly, Timeframe.HOUR),
        ])

    # ──────────────────────────────────────────
    # Scoring & Narrative
    # ──────────────────────────────────────────

    def _signal_strength(
        self,
        analyses: Sequence[TimeframePatternAnalysis],
        by_tf: Mapping[Timeframe, TimeframePatternAnalysis],
        combined: Direction,
        bullish: float,
        bearish: float,
    ) -> float:
        strength = 50.0
        total_weight = sum(self.timeframe_weights.values())

        if combined != Direction.NEUTRAL and total_weight > 0:
            winning = bullish if combined == Direction.BULLISH else bearish
            strength += 20 * (winning / total_weight)
            # cross-timeframe consensus intensity
            half = total_weight / 2
            strength += 15 * (1.0 if winning > half else winning / half)

            hourly = by_tf.get(Timeframe.HOUR)
            if hourly is not None and hourly.pattern_signal == combined:
                strength += 10
            daily = by_tf.get(Timeframe.DAILY)
            if daily is not None and daily.pattern_signal == combined:
                strength += 15

        for analysis in analyses:
            pattern = analysis.dominant_pattern
            if pattern is None:
                continue
            if pattern.reliability > 70:
                strength += 10

            end = pattern.component.end_index
            estimated_length = end + (end - pattern.component.start_index)
            if estimated_length <= 0:
                continue
            recency = end / estimated_length
            if recency > 0.8:
                strength += 10
            elif recency > 0.6:
                strength += 5

        return max(0.0, min(100.0, strength))

    @staticmethod
    def _describe(
        by_tf: Mapping[Timeframe, TimeframePatternAnalysis],
        combined: Direction,
        strength: float,
    ) -> str:
        description = f"Combined pattern analysis shows a {combined.value} signal, signal strength: {strength:.2f}/100."

        def signal_of(tf: Timeframe) -> Optional[Direction]:
            analysis = by_tf.get(tf)
            return analysis.pattern_signal if analysis is not None else None

        hourly = signal_of(Timeframe.HOUR)
        daily = signal_of(Timeframe.DAILY)
        weekly = signal_of(Timeframe.WEEKLY)

        def directional(signal: Optional[Direction]) -> bool:
            return signal is not None and signal != Direction.NEUTRAL

        if directional(hourly) and hourly == daily == weekly:
            description += f" Short- and long-term patterns agree {hourly.value}; the signal is highly reliable."
        elif directional(hourly) and hourly == daily:
            description += f" Short- and medium-term patterns agree {hourly.value}; the signal is fairly reliable."
        elif directional(daily) and daily == weekly:
            description += f" Medium- and long-term patterns agree {daily.value}, but the short term may fluctuate."
        elif directional(hourly):
            description += f" Short-term patterns are {hourly.value}; watch for short-term opportunities."

        for tf, label in ((Timeframe.HOUR, "1-hour"), (Timeframe.DAILY, "Daily")):
            analysis = by_tf.get(tf)
            dominant = analysis.dominant_pattern if analysis is not None else None
            if dominant is not None:
                description += (
                    f" {label} dominant pattern: {dominant.pattern_type.value} "
                    f"({dominant.direction.value}), reliability: {dominant.reliability:.2f}/100."
                )
        return description
