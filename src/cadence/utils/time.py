"""Time utilities for Cadence.

Provides timezone-aware "now" plus the calendar conventions used by learned
weights: hours are 0-23 and days of the week are 1-7 with 1 = Sunday.
"""

from datetime import UTC, datetime

WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def hour_of_day(moment: datetime) -> int:
    """Hour bucket (0-23) of a moment, in the moment's own timezone."""
    return moment.hour


def day_of_week(moment: datetime) -> int:
    """Day-of-week bucket (1-7, 1 = Sunday) of a moment.

    isoweekday() is Monday=1..Sunday=7, so shift by one modulo 7.
    """
    return moment.isoweekday() % 7 + 1


def weekday_name(day: int) -> str:
    """Name of a 1-7 (1 = Sunday) day bucket."""
    return WEEKDAY_NAMES[(day - 1) % 7]


def ensure_aware(moment: datetime) -> datetime:
    """Treat a naive datetime as UTC; aware ones are returned unchanged."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment
