"""
Confluence — Error Taxonomy

Combination errors are raised to the caller and never retried here; retries
belong to whoever fetched the candles.
"""

from __future__ import annotations

import warnings

import structlog

log = structlog.get_logger(__name__)


class ConfluenceError(Exception):
    """Base class for analysis errors."""


class MissingPrimaryTimeframeError(ConfluenceError):
    """Raised when the configured primary timeframe has no analysis."""

    def __init__(self, timeframe: str):
        self.timeframe = timeframe
        super().__init__(f"No analysis found for primary timeframe '{timeframe}'")


class InsufficientDataWarning(UserWarning):
    """Fewer candles than a detector needs; results degrade to empty/neutral."""


def warn_insufficient_data(component: str, timeframe: str | None, available: int, required: int) -> None:
    """Log and emit an :class:`InsufficientDataWarning`."""
    log.warning(
        "data.insufficient",
        component=component,
        timeframe=timeframe,
        available=available,
        required=required,
    )
    warnings.warn(
        f"{component}: {available} candles available for {timeframe or 'input'}, {required} required",
        InsufficientDataWarning,
        stacklevel=3,
    )
