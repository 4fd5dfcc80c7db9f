"""
Confluence — Trend Reversal Engine

Detects a small-timeframe pullback that resumes the large-timeframe trend
("with-trend reversal") and filters it by strength.

Default detector logic:
  1. Large-timeframe trend from EMA(20) vs EMA(50) and the last close
  2. Small timeframe: swing extreme, counter-trend pullback below/above
     EMA(9), then a close back on the trend side of EMA(9)
  3. Strength = trend spread (≤40) + retracement depth (≤30) + RSI momentum (≤30)
  4. Targets: prior swing extreme, measured move, 1.618 extension, each with
     risk/reward against the pullback stop

Uses the `ta` library for indicator calculations on pandas DataFrames.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

import numpy as np
import pandas as pd
import structlog
from ta.momentum import RSIIndicator
from ta.trend import EMAIndicator

from confluence.config import get_settings
from confluence.engines.conflict_engine import TIMEFRAME_LABELS
from confluence.errors import warn_insufficient_data
from confluence.models import (
    Candle,
    ReversalTargets,
    Timeframe,
    TrendReversalSignal,
    TrendReversalVerdict,
)

log = structlog.get_logger(__name__)

MIN_SMALL_CANDLES = 30
MIN_LARGE_CANDLES = 50
EXTENSION_RATIO = 1.618


class ReversalDetector(Protocol):
    """Anything that compares a small and a large timeframe for a reversal."""

    def detect(
        self,
        small: Sequence[Candle],
        large: Sequence[Candle],
        small_timeframe: Timeframe | str,
        large_timeframe: Timeframe | str,
    ) -> TrendReversalSignal: ...


def _bars_to_dataframe(candles: Sequence[Candle]) -> pd.DataFrame:
    df = pd.DataFrame({
        "timestamp": [c.timestamp for c in candles],
        "open": [c.open for c in candles],
        "high": [c.high for c in candles],
        "low": [c.low for c in candles],
        "close": [c.close for c in candles],
        "volume": [float(c.volume) for c in candles],
    })
    df.set_index("timestamp", inplace=True)
    return df


class EmaPullbackReversalDetector:
    """EMA-based pullback/resumption detector.

    Usage:
        detector = EmaPullbackReversalDetector()
        signal = detector.detect(hourly, daily, "1hour", "daily")
    """

    def __init__(self, lookback: int = 20):
        self.lookback = lookback

    def detect(
        self,
        small: Sequence[Candle],
        large: Sequence[Candle],
        small_timeframe: Timeframe | str = Timeframe.HOUR,
        large_timeframe: Timeframe | str = Timeframe.DAILY,
    ) -> TrendReversalSignal:
        small_tf = Timeframe(small_timeframe)
        large_tf = Timeframe(large_timeframe)

        def no_signal(description: str) -> TrendReversalSignal:
            return TrendReversalSignal(
                small_timeframe=small_tf,
                large_timeframe=large_tf,
                description=description,
            )

        if len(small) < MIN_SMALL_CANDLES:
            warn_insufficient_data("reversal_detector", small_tf.value, len(small), MIN_SMALL_CANDLES)
            return no_signal("Insufficient data")
        if len(large) < MIN_LARGE_CANDLES:
            warn_insufficient_data("reversal_detector", large_tf.value, len(large), MIN_LARGE_CANDLES)
            return no_signal("Insufficient data")

        trend, spread = self._large_trend(_bars_to_dataframe(large))
        if trend == 0:
            return no_signal("Large timeframe has no clear trend")

        df = _bars_to_dataframe(small)
        ema9 = EMAIndicator(df["close"], window=9).ema_indicator().to_numpy()
        rsi = RSIIndicator(df["close"], window=14).rsi().iloc[-1]
        if np.isnan(ema9[-1]) or np.isnan(rsi):
            return no_signal("Insufficient data")

        # orient prices so a downtrend reads like an uptrend
        if trend > 0:
            highs, lows = df["high"].to_numpy(), df["low"].to_numpy()
        else:
            highs, lows = -df["low"].to_numpy(), -df["high"].to_numpy()
        closes = trend * df["close"].to_numpy()
        ema = trend * ema9

        setup = self._pullback_setup(highs, lows, closes, ema)
        if setup is None:
            return no_signal("No pullback and resumption on the small timeframe")
        swing, pullback, entry = setup

        height = swing - pullback
        risk = entry - pullback
        spread_score = min(40.0, spread * 1000)
        depth_score = min(30.0, height / abs(swing) * 1000)
        momentum = (rsi - 40) if trend > 0 else (60 - rsi)
        momentum_score = min(30.0, max(0.0, momentum * 1.5))
        strength = spread_score + depth_score + momentum_score

        raw_targets = (swing, entry + height, entry + EXTENSION_RATIO * height)
        targets = ReversalTargets(
            target1=trend * raw_targets[0],
            target2=trend * raw_targets[1],
            target3=trend * raw_targets[2],
            risk_reward_ratio1=(raw_targets[0] - entry) / risk,
            risk_reward_ratio2=(raw_targets[1] - entry) / risk,
            risk_reward_ratio3=(raw_targets[2] - entry) / risk,
        )
        trend_word = "uptrend" if trend > 0 else "downtrend"

        log.debug(
            "reversal.detected",
            small=small_tf.value,
            large=large_tf.value,
            direction=trend,
            strength=round(strength, 1),
        )
        return TrendReversalSignal(
            small_timeframe=small_tf,
            large_timeframe=large_tf,
            is_reversal=True,
            reversal_strength=strength,
            direction=trend,
            entry_price=trend * entry,
            stop_loss=trend * pullback,
            targets=targets,
            description=(
                f"{TIMEFRAME_LABELS[small_tf]} pullback resumed the "
                f"{TIMEFRAME_LABELS[large_tf].lower()} {trend_word}"
            ),
        )

    @staticmethod
    def _large_trend(df: pd.DataFrame) -> tuple[int, float]:
        """Returns (+1 up / -1 down / 0 none, relative EMA spread)."""
        ema20 = EMAIndicator(df["close"], window=20).ema_indicator().iloc[-1]
        ema50 = EMAIndicator(df["close"], window=50).ema_indicator().iloc[-1]
        close = df["close"].iloc[-1]
        if np.isnan(ema20) or np.isnan(ema50) or ema50 == 0:
            return 0, 0.0
        spread = abs(ema20 - ema50) / abs(ema50)
        if ema20 > ema50 and close > ema50:
            return 1, spread
        if ema20 < ema50 and close < ema50:
            return -1, spread
        return 0, spread

    def _pullback_setup(
        self,
        highs: np.ndarray,
        lows: np.ndarray,
        closes: np.ndarray,
        ema: np.ndarray,
    ) -> Optional[tuple[float, float, float]]:
        """Find (swing extreme, pullback extreme, entry) on up-oriented prices."""
        n = len(closes)
        start = max(0, n - 2 * self.lookback)
        pullback_idx = (n - self.lookback) + int(np.argmin(lows[n - self.lookback:n - 1]))
        swing_idx = start + int(np.argmax(highs[start:pullback_idx + 1]))

        swing = float(highs[swing_idx])
        pullback = float(lows[pullback_idx])
        entry = float(closes[-1])

        counter_trend = any(
            closes[j] < ema[j] for j in range(swing_idx, n - 1) if not np.isnan(ema[j])
        )
        resumed = entry > ema[-1]
        if not (counter_trend and resumed and pullback < entry < swing):
            return None
        return swing, pullback, entry


# ──────────────────────────────────────────────
# Signal Filter
# ──────────────────────────────────────────────

def evaluate_reversal(
    signal: TrendReversalSignal,
    signal_threshold: Optional[float] = None,
) -> TrendReversalVerdict:
    """Keep a reversal only when it reaches ``signal_threshold`` strength."""
    if signal_threshold is None:
        signal_threshold = get_settings().reversal_signal_threshold

    small = TIMEFRAME_LABELS[signal.small_timeframe].lower()
    large = TIMEFRAME_LABELS[signal.large_timeframe].lower()
    has_signal = signal.is_reversal and signal.reversal_strength >= signal_threshold

    if has_signal:
        trend_word = "uptrend" if signal.direction > 0 else "downtrend"
        action = "long" if signal.direction > 0 else "short"
        summary = (
            f"Detected a {small} vs {large} with-trend reversal: the {small} pullback has turned back "
            f"into the {large} {trend_word}, signal strength: {signal.reversal_strength:.1f}/100, "
            f"suggest going {action}"
        )
        if signal.entry_price is not None:
            summary += f", entry: {signal.entry_price:.2f}"
        if signal.targets is not None:
            summary += f", target 1: {signal.targets.target1:.2f}"
            summary += f", target 2: {signal.targets.target2:.2f}"
            summary += f", target 3: {signal.targets.target3:.2f}"
        summary += "."
    elif signal.is_reversal:
        summary = (
            f"Detected a weak {small} vs {large} with-trend reversal, but strength insufficient "
            f"(below {signal_threshold:g}); wait for a clearer confirmation signal."
        )
    else:
        summary = f"No {small} vs {large} trend reversal signal detected."

    log.info(
        "reversal.evaluated",
        small=signal.small_timeframe.value,
        large=signal.large_timeframe.value,
        is_reversal=signal.is_reversal,
        strength=signal.reversal_strength,
        threshold=signal_threshold,
        has_signal=has_signal,
    )
    return TrendReversalVerdict(
        has_signal=has_signal,
        primary_signal=signal if has_signal else None,
        summary=summary,
    )


def has_trend_reversal_signal(
    hourly: Sequence[Candle],
    daily: Sequence[Candle],
    signal_threshold: Optional[float] = None,
    detector: Optional[ReversalDetector] = None,
) -> TrendReversalVerdict:
    """Check the 1-hour timeframe against the daily trend."""
    detector = detector or EmaPullbackReversalDetector()
    signal = detector.detect(hourly, daily, Timeframe.HOUR, Timeframe.DAILY)
    return evaluate_reversal(signal, signal_threshold)
