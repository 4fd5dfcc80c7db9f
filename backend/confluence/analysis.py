"""
Confluence — Multi-Timeframe Analysis Facade

Entry points that take raw candles per timeframe and return combined results.
Candle fetching is the caller's concern; every function here is synchronous
and side-effect free apart from logging.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Sequence

import structlog

from confluence.engines.chip_distribution import ChipAnalyzer, VolumeProfileChipAnalyzer
from confluence.engines.chip_engine import ChipCombiner
from confluence.engines.integration_engine import build_integrated_report
from confluence.engines.pattern_engine import PatternEngine
from confluence.engines import reversal_engine
from confluence.engines.reversal_engine import EmaPullbackReversalDetector, ReversalDetector
from confluence.engines.timeframe_weights import build_weighted_analyses
from confluence.models import (
    BreakoutDetection,
    Candle,
    CombinedChipResult,
    ComprehensivePatternAnalysis,
    IntegratedReport,
    Timeframe,
    TrendReversalVerdict,
)

log = structlog.get_logger(__name__)

DEFAULT_TIMEFRAMES = (Timeframe.WEEKLY, Timeframe.DAILY, Timeframe.HOUR)

# ── Singleton Instances ──
_chip_analyzer = VolumeProfileChipAnalyzer()
_chip_combiner = ChipCombiner()
_patterns = PatternEngine()
_reversal = EmaPullbackReversalDetector()


# ──────────────────────────────────────────────
# Chip Distribution
# ──────────────────────────────────────────────

def multi_timeframe_chip_dist_analysis(
    symbol: str,
    primary_timeframe: Timeframe | str = Timeframe.DAILY,
    include_timeframes: Iterable[Timeframe | str] = DEFAULT_TIMEFRAMES,
    weights: Optional[Mapping[str, float]] = None,
    weekly_candles: Optional[Sequence[Candle]] = None,
    daily_candles: Optional[Sequence[Candle]] = None,
    hourly_candles: Optional[Sequence[Candle]] = None,
    breakout: Optional[BreakoutDetection] = None,
    chip_analyzer: Optional[ChipAnalyzer] = None,
) -> CombinedChipResult:
    """Analyze chip distribution per timeframe and combine with weights.

    Args:
        symbol: Ticker symbol.
        primary_timeframe: Timeframe whose price and recommendation anchor the result.
        include_timeframes: Timeframes to analyze; ones without candles are skipped.
        weights: Per-timeframe weight table (defaults to settings).
        breakout: Optional breakout detector output whose dynamic levels join the pool.
        chip_analyzer: Per-timeframe analyzer (defaults to the volume-profile analyzer).

    Raises:
        MissingPrimaryTimeframeError: the primary timeframe produced no analysis.
    """
    analyzer = chip_analyzer or _chip_analyzer
    candles_by_tf = {
        Timeframe.WEEKLY: weekly_candles,
        Timeframe.DAILY: daily_candles,
        Timeframe.HOUR: hourly_candles,
    }
    include = [Timeframe(tf) for tf in include_timeframes]

    raw = {}
    for tf in include:
        candles = candles_by_tf.get(tf)
        raw[tf] = analyzer.analyze(symbol, tf, candles) if candles else None

    # One settings snapshot per call: the combiner's
    settings = _chip_combiner.settings
    weight_table = weights if weights is not None else settings.chip_timeframe_weights
    weighted = build_weighted_analyses(
        raw, include, primary_timeframe, weight_table, settings.default_timeframe_weight,
    )
    return _chip_combiner.combine(weighted, primary_timeframe, breakout=breakout)


# ──────────────────────────────────────────────
# Patterns & Reversal
# ──────────────────────────────────────────────

def analyze_multi_timeframe_patterns(
    weekly: Sequence[Candle],
    daily: Sequence[Candle],
    hourly: Sequence[Candle],
) -> ComprehensivePatternAnalysis:
    """Detect and combine chart patterns across weekly, daily and 1-hour candles."""
    return _patterns.analyze_multi_timeframe_patterns(weekly, daily, hourly)


def has_trend_reversal_signal(
    hourly: Sequence[Candle],
    daily: Sequence[Candle],
    signal_threshold: Optional[float] = None,
    detector: Optional[ReversalDetector] = None,
) -> TrendReversalVerdict:
    """Check for a 1-hour pullback resuming the daily trend."""
    return reversal_engine.has_trend_reversal_signal(hourly, daily, signal_threshold, detector or _reversal)


# ──────────────────────────────────────────────
# Integrated
# ──────────────────────────────────────────────

def integrated_analysis(
    symbol: str,
    weekly: Sequence[Candle],
    daily: Sequence[Candle],
    hourly: Sequence[Candle],
    primary_timeframe: Timeframe | str = Timeframe.DAILY,
    breakout: Optional[BreakoutDetection] = None,
    chip_analyzer: Optional[ChipAnalyzer] = None,
    signal_threshold: Optional[float] = None,
    include_reversal: bool = True,
) -> IntegratedReport:
    """Chip distribution + chart patterns (+ trend reversal) in one report."""
    chip = multi_timeframe_chip_dist_analysis(
        symbol,
        primary_timeframe=primary_timeframe,
        weekly_candles=weekly,
        daily_candles=daily,
        hourly_candles=hourly,
        breakout=breakout,
        chip_analyzer=chip_analyzer,
    )
    patterns = analyze_multi_timeframe_patterns(weekly, daily, hourly)
    reversal = has_trend_reversal_signal(hourly, daily, signal_threshold) if include_reversal else None

    log.debug("analysis.integrated", symbol=symbol, reversal=include_reversal)
    return build_integrated_report(chip, patterns, reversal)
