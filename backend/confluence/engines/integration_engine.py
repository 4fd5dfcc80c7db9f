"""
Confluence — Integration Engine

Blends the combined chip recommendation with the combined chart-pattern
signal (and, optionally, a trend-reversal verdict) into a single directional
report with a confidence score, graded signal, warnings and key levels.

Scoring:
  chip_score    = combined buy − combined short          (−100..100)
  pattern_score = ±signal_strength by combined signal    (−100..100)
  composite     = weighted mean of the two
"""

from __future__ import annotations

import math
from typing import Optional

import structlog

from confluence.config import get_settings
from confluence.engines.conflict_engine import cross_check
from confluence.engines.level_engine import levels_above, levels_below
from confluence.models import (
    CombinedChipResult,
    ComprehensivePatternAnalysis,
    Direction,
    IntegratedReport,
    KeyLevel,
    Recommendation,
    SignalGrade,
    TradeDirection,
    TrendReversalVerdict,
)

log = structlog.get_logger(__name__)

DIRECTION_THRESHOLD = 15.0
MAX_LEVELS_PER_SIDE = 3

_CHIP_SIGN = {Recommendation.LONG: 1, Recommendation.SHORT: -1, Recommendation.WATCH: 0}
_PATTERN_SIGN = {Direction.BULLISH: 1, Direction.BEARISH: -1, Direction.NEUTRAL: 0}


def _grade(composite: float, chip_sign: int, pattern_sign: int) -> SignalGrade:
    if chip_sign * pattern_sign < 0:
        return SignalGrade.CONFLICTING
    magnitude = abs(composite)
    if magnitude >= 50:
        return SignalGrade.STRONG
    if magnitude >= 30:
        return SignalGrade.MODERATE
    if magnitude > DIRECTION_THRESHOLD:
        return SignalGrade.WEAK
    return SignalGrade.NEUTRAL


def _key_levels(chip: CombinedChipResult, patterns: ComprehensivePatternAnalysis) -> list[KeyLevel]:
    levels = [
        KeyLevel(
            price=price,
            level_type="support",
            source="chip",
            timeframe=chip.primary_timeframe,
            description="Aggregated chip support",
        )
        for price in levels_below(chip.aggregated_support_levels, chip.current_price, MAX_LEVELS_PER_SIDE)
    ]
    levels += [
        KeyLevel(
            price=price,
            level_type="resistance",
            source="chip",
            timeframe=chip.primary_timeframe,
            description="Aggregated chip resistance",
        )
        for price in levels_above(chip.aggregated_resistance_levels, chip.current_price, MAX_LEVELS_PER_SIDE)
    ]
    for analysis in patterns.timeframe_analyses:
        dominant = analysis.dominant_pattern
        if dominant is None or dominant.component.breakout_level <= 0:
            continue
        levels.append(KeyLevel(
            price=dominant.component.breakout_level,
            level_type="breakout",
            source="pattern",
            timeframe=analysis.timeframe,
            description=f"{dominant.pattern_type.value} breakout level",
        ))
    return levels


def build_integrated_report(
    chip: CombinedChipResult,
    patterns: ComprehensivePatternAnalysis,
    reversal: Optional[TrendReversalVerdict] = None,
    chip_weight: Optional[float] = None,
    pattern_weight: Optional[float] = None,
) -> IntegratedReport:
    """Blend chip and pattern verdicts into one report.

    Raises:
        ValueError: ``chip_weight + pattern_weight`` is not positive.
    """
    settings = get_settings()
    cw = settings.chip_weight if chip_weight is None else chip_weight
    pw = settings.pattern_weight if pattern_weight is None else pattern_weight
    if cw < 0 or pw < 0 or cw + pw <= 0:
        raise ValueError(f"chip_weight and pattern_weight must be non-negative with a positive sum, got {cw}, {pw}")

    chip_sign = _CHIP_SIGN[chip.combined_recommendation]
    pattern_sign = _PATTERN_SIGN[patterns.combined_signal]

    chip_score = chip.combined_buy_signal_strength - chip.combined_short_signal_strength
    pattern_score = pattern_sign * patterns.signal_strength
    composite = (cw * chip_score + pw * pattern_score) / (cw + pw)

    if composite > DIRECTION_THRESHOLD:
        direction = TradeDirection.LONG
    elif composite < -DIRECTION_THRESHOLD:
        direction = TradeDirection.SHORT
    else:
        direction = TradeDirection.NEUTRAL

    grade = _grade(composite, chip_sign, pattern_sign)
    confidence = int(math.floor(abs(composite) + 0.5))

    chip_part = abs(cw * chip_score)
    pattern_part = abs(pw * pattern_score)
    if chip_part + pattern_part > 0:
        chip_contribution = chip_part / (chip_part + pattern_part) * 100
    else:
        chip_contribution = 50.0
    pattern_contribution = 100.0 - chip_contribution

    warnings = list(chip.timeframe_conflicts) + cross_check(chip, patterns)
    if reversal is not None and reversal.has_signal and reversal.primary_signal is not None:
        reversal_dir = reversal.primary_signal.direction
        if (direction == TradeDirection.LONG and reversal_dir < 0) or (
            direction == TradeDirection.SHORT and reversal_dir > 0
        ):
            warnings.append(
                f"Trend reversal signal points {'up' if reversal_dir > 0 else 'down'}, "
                f"against the {direction.value} bias."
            )

    summary = (
        f"{chip.symbol}: {grade.value} {direction.value} signal, confidence {confidence}/100 "
        f"(composite {composite:+.1f}). Chip: {chip.combined_recommendation.value}, "
        f"buy {chip.combined_buy_signal_strength}/short {chip.combined_short_signal_strength}. "
        f"Patterns: {patterns.combined_signal.value}, strength {patterns.signal_strength:.0f}/100."
    )
    if reversal is not None and reversal.has_signal:
        summary += " " + reversal.summary

    log.info(
        "report.integrated",
        symbol=chip.symbol,
        direction=direction.value,
        grade=grade.value,
        composite=round(composite, 2),
        warnings=len(warnings),
    )
    return IntegratedReport(
        symbol=chip.symbol,
        current_price=chip.current_price,
        direction=direction,
        signal_grade=grade,
        confidence_score=confidence,
        composite_score=composite,
        chip_weight=cw,
        pattern_weight=pw,
        chip_contribution=chip_contribution,
        pattern_contribution=pattern_contribution,
        summary=summary,
        warnings=warnings,
        key_levels=_key_levels(chip, patterns),
        chip=chip,
        patterns=patterns,
        reversal=reversal,
    )
