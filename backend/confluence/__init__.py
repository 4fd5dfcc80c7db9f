# Multi-timeframe chip / pattern / reversal analysis
from confluence.analysis import (
    analyze_multi_timeframe_patterns,
    has_trend_reversal_signal,
    integrated_analysis,
    multi_timeframe_chip_dist_analysis,
)
from confluence.errors import ConfluenceError, InsufficientDataWarning, MissingPrimaryTimeframeError

__all__ = [
    "ConfluenceError",
    "InsufficientDataWarning",
    "MissingPrimaryTimeframeError",
    "analyze_multi_timeframe_patterns",
    "has_trend_reversal_signal",
    "integrated_analysis",
    "multi_timeframe_chip_dist_analysis",
]
