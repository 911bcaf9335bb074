"""Time utilities for LLKB.

All timestamps handled by the store are timezone-aware UTC datetimes.
"""

from datetime import UTC, date, datetime

SECONDS_PER_DAY = 86_400.0


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from ``earlier`` to ``later`` (negative if reversed)."""
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / SECONDS_PER_DAY


def calendar_day(moment: datetime, boundary: str = "utc") -> date:
    """Calendar day a moment falls on, in UTC or in the local timezone."""
    if boundary == "local":
        return ensure_utc(moment).astimezone().date()
    return ensure_utc(moment).date()
