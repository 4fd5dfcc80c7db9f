"""
Confluence — Timeframe Weights

Wraps each timeframe's raw chip analysis with the weight it carries in the
cross-timeframe combination.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

import structlog

from confluence.config import get_settings
from confluence.errors import MissingPrimaryTimeframeError
from confluence.models import ChipAnalysis, Timeframe, WeightedTimeframeAnalysis, clamp_score

log = structlog.get_logger(__name__)


def weight_for(
    timeframe: Timeframe | str,
    weight_table: Optional[Mapping[str, float]],
    default_weight: Optional[float] = None,
) -> float:
    """Look up a timeframe's weight, falling back to the configured default."""
    if default_weight is None:
        default_weight = get_settings().default_timeframe_weight
    key = Timeframe(timeframe).value
    if not weight_table or key not in weight_table:
        return default_weight
    return weight_table[key]


def normalize_timeframe(
    timeframe: Timeframe | str,
    raw_analysis: ChipAnalysis,
    weight_table: Optional[Mapping[str, float]] = None,
    default_weight: Optional[float] = None,
) -> WeightedTimeframeAnalysis:
    """Pair ``raw_analysis`` with its weight from ``weight_table``."""
    tf = Timeframe(timeframe)
    return WeightedTimeframeAnalysis(
        timeframe=tf,
        analysis=raw_analysis,
        weight=weight_for(tf, weight_table, default_weight),
    )


def build_weighted_analyses(
    raw_by_timeframe: Mapping[Timeframe | str, Optional[ChipAnalysis]],
    include_timeframes: Iterable[Timeframe | str],
    primary_timeframe: Timeframe | str,
    weight_table: Optional[Mapping[str, float]] = None,
    default_weight: Optional[float] = None,
) -> list[WeightedTimeframeAnalysis]:
    """Normalize every included timeframe that has an analysis.

    Raises:
        MissingPrimaryTimeframeError: the primary timeframe has no analysis.
    """
    raw = {Timeframe(tf): analysis for tf, analysis in raw_by_timeframe.items()}
    primary = Timeframe(primary_timeframe)
    if raw.get(primary) is None:
        raise MissingPrimaryTimeframeError(primary.value)

    weighted = []
    for tf in (Timeframe(t) for t in include_timeframes):
        analysis = raw.get(tf)
        if analysis is None:
            log.warning("timeframe.missing", timeframe=tf.value)
            continue
        weighted.append(normalize_timeframe(tf, analysis, weight_table, default_weight))
    return weighted


def signal_strengths(weighted: WeightedTimeframeAnalysis) -> tuple[float, float]:
    """Clamped ``(buy, short)`` signal strengths of one timeframe."""
    analysis = weighted.analysis
    return clamp_score(analysis.buy_signal_strength), clamp_score(analysis.short_signal_strength)
