"""
Confluence — Level Engine

Groups nearby support/resistance prices coming from several timeframes into
consensus levels, and picks the levels nearest to a price.

Pure domain logic — no I/O.
"""

from __future__ import annotations

from typing import Iterable, Optional


def group_nearby_levels(
    levels: Iterable[float],
    reference_price: float,
    proximity_threshold: float = 0.02,
) -> list[float]:
    """Collapse nearby price levels into the mean of each cluster.

    Single greedy pass over the sorted levels: a level joins the open group
    when its gap to the previous level, as a fraction of ``reference_price``,
    is at most ``proximity_threshold``. Consecutive small gaps chain, so one
    group may span far more than the threshold in absolute terms.

    Args:
        levels: Non-negative prices, any order, duplicates allowed.
        reference_price: Price used to express gaps as a fraction (> 0).
        proximity_threshold: Maximum fractional gap inside a group.

    Returns:
        Ascending list of group means. Empty input gives an empty list.
    """
    ordered = sorted(float(level) for level in levels)
    if not ordered:
        return []
    if ordered[0] < 0:
        raise ValueError(f"Price levels must be non-negative, got {ordered[0]}")
    if reference_price <= 0:
        raise ValueError(f"Reference price must be positive, got {reference_price}")

    grouped: list[float] = []
    group = [ordered[0]]

    for previous, level in zip(ordered, ordered[1:]):
        if (level - previous) / reference_price <= proximity_threshold:
            group.append(level)
        else:
            grouped.append(sum(group) / len(group))
            group = [level]

    grouped.append(sum(group) / len(group))
    return grouped


def levels_below(levels: Iterable[float], price: float, limit: Optional[int] = None) -> list[float]:
    """Levels strictly below ``price``, nearest first."""
    below = sorted((lv for lv in levels if lv < price), reverse=True)
    return below if limit is None else below[:limit]


def levels_above(levels: Iterable[float], price: float, limit: Optional[int] = None) -> list[float]:
    """Levels strictly above ``price``, nearest first."""
    above = sorted(lv for lv in levels if lv > price)
    return above if limit is None else above[:limit]
