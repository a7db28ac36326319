"""Shared utilities for Cadence.

Contains cross-cutting utilities used by multiple modules.
"""

from cadence.utils.time import (
    WEEKDAY_NAMES,
    day_of_week,
    ensure_aware,
    hour_of_day,
    utc_now,
    weekday_name,
)

__all__ = [
    "WEEKDAY_NAMES",
    "day_of_week",
    "ensure_aware",
    "hour_of_day",
    "utc_now",
    "weekday_name",
]
