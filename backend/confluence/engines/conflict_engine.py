"""
Confluence — Timeframe Conflict Detector

Compares adjacent-timeframe chip recommendations and technical-vs-shape
signals, and cross-checks the chip verdict against the chart-pattern verdict.
Every rule is evaluated independently; a rule whose timeframes are absent is
skipped, never an error.
"""

from __future__ import annotations

from typing import Optional, Sequence

import structlog

from confluence.models import (
    ChipAnalysis,
    CombinedChipResult,
    ComprehensivePatternAnalysis,
    Direction,
    Recommendation,
    Timeframe,
    WeightedTimeframeAnalysis,
)

log = structlog.get_logger(__name__)

TIMEFRAME_LABELS = {
    Timeframe.WEEKLY: "Weekly",
    Timeframe.DAILY: "Daily",
    Timeframe.HOUR: "1-hour",
}

# (shorter, longer, message when shorter bullish/longer bearish, message when inverse)
_ADJACENT_RULES = [
    (
        Timeframe.HOUR,
        Timeframe.DAILY,
        "Short term bullish but medium term bearish: reversal risk.",
        "Short term bearish but medium term bullish: possible pullback buying opportunity.",
    ),
    (
        Timeframe.DAILY,
        Timeframe.WEEKLY,
        "Medium term bullish but long term bearish: watch long-term resistance.",
        "Medium term bearish but long term bullish: likely a pullback within the long-term uptrend.",
    ),
]


def _find(analyses: Sequence[WeightedTimeframeAnalysis], timeframe: Timeframe) -> Optional[ChipAnalysis]:
    for item in analyses:
        if item.timeframe == timeframe:
            return item.analysis
    return None


def detect_conflicts(analyses: Sequence[WeightedTimeframeAnalysis]) -> list[str]:
    """Human-readable warnings for disagreements between timeframes."""
    conflicts: list[str] = []

    for shorter_tf, longer_tf, bull_over_bear, bear_over_bull in _ADJACENT_RULES:
        shorter = _find(analyses, shorter_tf)
        longer = _find(analyses, longer_tf)
        if shorter is None or longer is None:
            continue
        if shorter.recommendation_bias == Direction.BULLISH and longer.recommendation_bias == Direction.BEARISH:
            conflicts.append(bull_over_bear)
        elif shorter.recommendation_bias == Direction.BEARISH and longer.recommendation_bias == Direction.BULLISH:
            conflicts.append(bear_over_bull)

    for item in analyses:
        analysis = item.analysis
        label = TIMEFRAME_LABELS.get(item.timeframe, item.timeframe.value)
        if analysis.technical_bias == Direction.BULLISH and not analysis.shape_buy_signal:
            conflicts.append(f"{label} technical indicators are bullish but the chip shape does not confirm.")
        elif analysis.technical_bias == Direction.BEARISH and analysis.shape_buy_signal:
            conflicts.append(f"{label} technical indicators are bearish but the chip shape is bullish.")

    if conflicts:
        log.debug("conflicts.detected", count=len(conflicts))
    return conflicts


def cross_check(chip: CombinedChipResult, patterns: ComprehensivePatternAnalysis) -> list[str]:
    """Warnings where the chip recommendation opposes the chart-pattern signal."""
    warnings: list[str] = []
    if chip.combined_recommendation == Recommendation.LONG and patterns.combined_signal == Direction.BEARISH:
        warnings.append(
            f"Chip distribution favours longs but chart patterns are bearish "
            f"(pattern strength {patterns.signal_strength:.0f}/100)."
        )
    elif chip.combined_recommendation == Recommendation.SHORT and patterns.combined_signal == Direction.BULLISH:
        warnings.append(
            f"Chip distribution favours shorts but chart patterns are bullish "
            f"(pattern strength {patterns.signal_strength:.0f}/100)."
        )
    return warnings
