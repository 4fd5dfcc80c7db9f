"""
Confluence — Multi-Timeframe Chip Engine

Merges per-timeframe chip-distribution analyses into one weighted
recommendation:

  1. Weighted buy/short strengths across timeframes
  2. Alignment vote on each timeframe's directional tag
  3. Trend classification and consistency
  4. Consensus support/resistance via the level engine
  5. Long / short / watch recommendation with entry and exit plans
  6. Stop-loss and take-profit levels
  7. Timeframe conflicts folded into the narrative

Pure domain logic — the same inputs always give the same result.
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Optional, Sequence

import structlog

from confluence.config import Settings, get_settings
from confluence.engines.conflict_engine import detect_conflicts
from confluence.engines.level_engine import group_nearby_levels, levels_above, levels_below
from confluence.engines.timeframe_weights import signal_strengths
from confluence.errors import MissingPrimaryTimeframeError
from confluence.models import (
    Alignment,
    BreakoutDetection,
    ChipAnalysis,
    CombinedChipResult,
    Consistency,
    Direction,
    Recommendation,
    Timeframe,
    TrendDirection,
    WeightedTimeframeAnalysis,
)

log = structlog.get_logger(__name__)

# Strength gap (in points) that separates a directional call from a neutral one
_DIRECTIONAL_GAP = 20

_ENTRY_EXIT = {
    Recommendation.LONG: {
        "strong": (
            "Multiple timeframes agree on a bullish view; strong buy.",
            "Enter actively, scaling in near support.",
        ),
        "aligned": (
            "Timeframes lean bullish; buy.",
            "Buy on pullbacks to support.",
        ),
        "weak": (
            "Combined indicators lean bullish but timeframe agreement is weak; buy cautiously.",
            "Probe with a small position and wait for confirmation.",
        ),
        "exit": "Take profit near major resistance, or exit when the short timeframe turns to sell.",
    },
    Recommendation.SHORT: {
        "strong": (
            "Multiple timeframes agree on a bearish view; strong sell/short.",
            "Short actively, scaling in near resistance.",
        ),
        "aligned": (
            "Timeframes lean bearish; sell/short.",
            "Short on rallies into resistance.",
        ),
        "weak": (
            "Combined indicators lean bearish but timeframe agreement is weak; short cautiously.",
            "Probe with a small short position and wait for confirmation.",
        ),
        "exit": "Cover near major support, or exit when the short timeframe turns to buy.",
    },
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def timeframe_outlook(analysis: Optional[ChipAnalysis]) -> str:
    """One-phrase outlook for a single timeframe."""
    if analysis is None:
        return "insufficient data"
    buy = analysis.buy_signal_strength
    short = analysis.short_signal_strength
    if buy > 75:
        return "strongly bullish"
    if buy > 60:
        return "bullish"
    if short > 75:
        return "strongly bearish"
    if short > 60:
        return "bearish"
    if buy > short + 10:
        return "leaning bullish"
    if short > buy + 10:
        return "leaning bearish"
    return "neutral"


class ChipCombiner:
    """Weighted cross-timeframe chip-distribution combiner.

    Usage:
        combiner = ChipCombiner()
        result = combiner.combine(weighted_analyses, Timeframe.DAILY)
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()

    @property
    def settings(self) -> Settings:
        return self._settings

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def combine(
        self,
        analyses: Sequence[WeightedTimeframeAnalysis],
        primary_timeframe: Timeframe | str,
        breakout: Optional[BreakoutDetection] = None,
    ) -> CombinedChipResult:
        """Combine weighted timeframe analyses into one recommendation.

        Raises:
            MissingPrimaryTimeframeError: no analysis for ``primary_timeframe``.
        """
        primary_tf = Timeframe(primary_timeframe)
        primary = self._find(analyses, primary_tf)
        if primary is None:
            raise MissingPrimaryTimeframeError(primary_tf.value)

        combined_buy, combined_short = self._weighted_strengths(analyses)
        alignment, alignment_strength = self._alignment(analyses)
        trend_direction, trend_consistency = self._trend(analyses)

        support_pool = [lv for a in analyses for lv in a.analysis.support_levels]
        resistance_pool = [lv for a in analyses for lv in a.analysis.resistance_levels]
        if breakout is not None:
            support_pool.extend(breakout.dynamic_support)
            resistance_pool.extend(breakout.dynamic_resistance)

        threshold = self._settings.level_proximity_threshold
        supports = group_nearby_levels(support_pool, primary.current_price, threshold)
        resistances = group_nearby_levels(resistance_pool, primary.current_price, threshold)

        conflicts = detect_conflicts(analyses)

        short_term = timeframe_outlook(self._find(analyses, Timeframe.HOUR))
        medium_term = timeframe_outlook(self._find(analyses, Timeframe.DAILY))
        long_term = timeframe_outlook(self._find(analyses, Timeframe.WEEKLY))

        recommendation, comment, entry, exit_ = self._recommend(
            combined_buy, combined_short, alignment, alignment_strength,
        )

        comment += f" Trend analysis: {trend_direction.value}, {trend_consistency.value} consistency."
        if conflicts:
            comment += " Note: " + " ".join(conflicts)
        comment += (
            f" Short term (1-hour) {short_term}, medium term (daily) {medium_term},"
            f" long term (weekly) {long_term}."
        )

        stop_loss = self._stop_loss_levels(recommendation, primary.current_price, supports, resistances)
        take_profit = self._take_profit_levels(recommendation, primary.current_price, supports, resistances)

        log.info(
            "chip.combined",
            symbol=primary.symbol,
            primary=primary_tf.value,
            timeframes=[a.timeframe.value for a in analyses],
            buy=combined_buy,
            short=combined_short,
            recommendation=recommendation.value,
            alignment=alignment.value,
            conflicts=len(conflicts),
        )

        return CombinedChipResult(
            symbol=primary.symbol,
            current_price=primary.current_price,
            primary_timeframe=primary_tf,
            timeframes=list(analyses),
            combined_buy_signal_strength=combined_buy,
            combined_short_signal_strength=combined_short,
            timeframe_alignment=alignment,
            alignment_strength=alignment_strength,
            primary_timeframe_recommendation=primary.overall_recommendation,
            combined_recommendation=recommendation,
            recommendation_comment=comment,
            trend_consistency=trend_consistency,
            trend_direction=trend_direction,
            aggregated_support_levels=supports,
            aggregated_resistance_levels=resistances,
            entry_strategy=entry,
            exit_strategy=exit_,
            stop_loss_levels=stop_loss,
            take_profit_levels=take_profit,
            timeframe_conflicts=conflicts,
            short_term_outlook=short_term,
            medium_term_outlook=medium_term,
            long_term_outlook=long_term,
        )

    # ──────────────────────────────────────────
    # Scoring
    # ──────────────────────────────────────────

    @staticmethod
    def _find(analyses: Sequence[WeightedTimeframeAnalysis], timeframe: Timeframe) -> Optional[ChipAnalysis]:
        for item in analyses:
            if item.timeframe == timeframe:
                return item.analysis
        return None

    @staticmethod
    def _weighted_strengths(analyses: Sequence[WeightedTimeframeAnalysis]) -> tuple[int, int]:
        """Weighted mean of buy and short strengths, rounded half up."""
        total_weight = sum(a.weight for a in analyses)
        # all-zero weights degrade to a plain mean
        weights = [a.weight for a in analyses] if total_weight > 0 else [1.0] * len(analyses)
        total_weight = sum(weights)

        weighted_buy = 0.0
        weighted_short = 0.0
        for item, weight in zip(analyses, weights):
            buy, short = signal_strengths(item)
            weighted_buy += buy * weight
            weighted_short += short * weight

        return _round_half_up(weighted_buy / total_weight), _round_half_up(weighted_short / total_weight)

    @staticmethod
    def _alignment(analyses: Sequence[WeightedTimeframeAnalysis]) -> tuple[Alignment, int]:
        total = len(analyses)
        votes = Counter(a.analysis.recommendation_bias for a in analyses)
        bullish = votes[Direction.BULLISH]
        bearish = votes[Direction.BEARISH]
        neutral = total - bullish - bearish

        if bullish > bearish and bullish > neutral:
            return Alignment.BULLISH, _round_half_up(bullish / total * 100)
        if bearish > bullish and bearish > neutral:
            return Alignment.BEARISH, _round_half_up(bearish / total * 100)
        if neutral >= bullish and neutral >= bearish:
            return Alignment.NEUTRAL, _round_half_up(neutral / total * 100)
        return Alignment.MIXED, 0

    @staticmethod
    def _classify_trend(item: WeightedTimeframeAnalysis) -> TrendDirection:
        buy, short = signal_strengths(item)
        if buy > short + _DIRECTIONAL_GAP:
            return TrendDirection.UPTREND
        if short > buy + _DIRECTIONAL_GAP:
            return TrendDirection.DOWNTREND
        return TrendDirection.RANGING

    def _trend(self, analyses: Sequence[WeightedTimeframeAnalysis]) -> tuple[TrendDirection, Consistency]:
        counts = Counter(self._classify_trend(a) for a in analyses)
        up = counts[TrendDirection.UPTREND]
        down = counts[TrendDirection.DOWNTREND]
        ranging = counts[TrendDirection.RANGING]

        direction = TrendDirection.RANGING
        if up > down and up > ranging:
            direction = TrendDirection.UPTREND
        elif down > up and down > ranging:
            direction = TrendDirection.DOWNTREND

        ratio = max(up, down, ranging) / len(analyses)
        if ratio >= 0.8:
            consistency = Consistency.STRONG
        elif ratio >= 0.5:
            consistency = Consistency.MODERATE
        else:
            consistency = Consistency.WEAK
        return direction, consistency

    # ──────────────────────────────────────────
    # Recommendation & Levels
    # ──────────────────────────────────────────

    @staticmethod
    def _recommend(
        combined_buy: int,
        combined_short: int,
        alignment: Alignment,
        alignment_strength: int,
    ) -> tuple[Recommendation, str, str, str]:
        """Returns (recommendation, comment, entry strategy, exit strategy)."""
        if combined_buy > combined_short + _DIRECTIONAL_GAP:
            recommendation, agreeing = Recommendation.LONG, Alignment.BULLISH
        elif combined_short > combined_buy + _DIRECTIONAL_GAP:
            recommendation, agreeing = Recommendation.SHORT, Alignment.BEARISH
        else:
            return (
                Recommendation.WATCH,
                "Timeframe signals disagree or are neutral; stay on the sidelines.",
                "Wait for a clearer signal before entering.",
                "Take small profits on existing positions and keep risk tight.",
            )

        texts = _ENTRY_EXIT[recommendation]
        if alignment == agreeing and alignment_strength > 70:
            comment, entry = texts["strong"]
        elif alignment == agreeing:
            comment, entry = texts["aligned"]
        else:
            comment, entry = texts["weak"]
        return recommendation, comment, entry, texts["exit"]

    @staticmethod
    def _stop_loss_levels(
        recommendation: Recommendation,
        current_price: float,
        supports: list[float],
        resistances: list[float],
    ) -> list[float]:
        if recommendation == Recommendation.LONG:
            return levels_below(supports, current_price, limit=2)
        if recommendation == Recommendation.SHORT:
            return levels_above(resistances, current_price, limit=2)
        # watch: nearest level on each side, whichever exist
        return levels_below(supports, current_price, limit=1) + levels_above(resistances, current_price, limit=1)

    @staticmethod
    def _take_profit_levels(
        recommendation: Recommendation,
        current_price: float,
        supports: list[float],
        resistances: list[float],
    ) -> list[float]:
        if recommendation == Recommendation.LONG:
            return levels_above(resistances, current_price, limit=3)
        if recommendation == Recommendation.SHORT:
            return levels_below(supports, current_price, limit=3)
        return []
