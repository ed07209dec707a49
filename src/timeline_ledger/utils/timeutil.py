"""UTC helpers.

SQLite hands back naive datetimes; every naive value in this package is UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime (naive input is taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_date(value: datetime) -> date:
    """Calendar date of ``value`` in UTC."""
    return ensure_utc(value).date()


def iso_week_key(value: datetime) -> tuple[int, int]:
    """ISO-8601 (year, week) of ``value`` in UTC.

    Week 1 is the week containing the year's first Thursday, so
    2024-01-01 (Monday) through 2024-01-07 (Sunday) share week (2024, 1).
    """
    iso = utc_date(value).isocalendar()
    return iso.year, iso.week


def start_of_day(value: datetime) -> datetime:
    """Midnight UTC of the day containing ``value``."""
    day = utc_date(value)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def start_of_iso_week(value: datetime) -> datetime:
    """Monday midnight UTC of the ISO week containing ``value``."""
    day_start = start_of_day(value)
    return day_start - timedelta(days=day_start.weekday())


def whole_seconds_between(start: datetime, end: datetime) -> int:
    """Elapsed whole seconds from ``start`` to ``end`` (never negative)."""
    delta = ensure_utc(end) - ensure_utc(start)
    return max(0, int(delta.total_seconds()))


def period_start(day: date, interval: str) -> date:
    """First date of the day, ISO week (Monday) or month containing ``day``."""
    if interval == "week":
        return day - timedelta(days=day.weekday())
    if interval == "month":
        return day.replace(day=1)
    return day
