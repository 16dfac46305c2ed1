"""
Advisory freshness classification.

Used for display and telemetry only; never gates what gets served.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FreshnessClass(str, Enum):
    fresh = "fresh"
    stale = "stale"
    old = "old"


class DataCategory(str, Enum):
    """Categories of data with different freshness expectations."""

    live = "live"            # live match data
    standings = "standings"  # points table
    schedule = "schedule"    # fixtures and results


# (fresh_below, stale_below) in seconds
FRESHNESS_THRESHOLDS: dict[DataCategory, tuple[float, float]] = {
    DataCategory.live: (30, 120),
    DataCategory.standings: (120, 300),
    DataCategory.schedule: (300, 1800),
}


def classify_age(age_seconds: float, category: DataCategory) -> FreshnessClass:
    fresh_below, stale_below = FRESHNESS_THRESHOLDS[category]
    if age_seconds < fresh_below:
        return FreshnessClass.fresh
    if age_seconds < stale_below:
        return FreshnessClass.stale
    return FreshnessClass.old


def classify(
    produced_at: Optional[float], now: float, category: DataCategory
) -> FreshnessClass:
    """Classify data produced at `produced_at`; no data at all is old."""
    if produced_at is None:
        return FreshnessClass.old
    return classify_age(now - produced_at, category)
