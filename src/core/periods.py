"""
UTC period-boundary math for summary rollups.

All values are epoch milliseconds. Boundaries are computed from calendar
fields in UTC so month and year rollover never depend on fixed offsets.
"""
import time
from datetime import date, datetime, timedelta, timezone
from typing import Literal, Tuple

Granularity = Literal["daily", "weekly", "monthly"]

GRANULARITIES: Tuple[Granularity, ...] = ("daily", "weekly", "monthly")

DAY_MS = 24 * 60 * 60 * 1000


def _to_date(timestamp_ms: int) -> date:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date()


def _to_ms(day: date) -> int:
    midnight = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return int(midnight.timestamp()) * 1000


def daily_start(timestamp_ms: int) -> int:
    """Start of the UTC day (00:00:00 UTC)."""
    return _to_ms(_to_date(timestamp_ms))


def weekly_start(timestamp_ms: int) -> int:
    """Most recent Sunday 00:00:00 UTC (the timestamp's own day if Sunday)."""
    day = _to_date(timestamp_ms)
    # weekday(): Monday=0 .. Sunday=6
    days_since_sunday = (day.weekday() + 1) % 7
    return _to_ms(day - timedelta(days=days_since_sunday))


def monthly_start(timestamp_ms: int) -> int:
    """First day of the UTC month, 00:00:00 UTC."""
    day = _to_date(timestamp_ms)
    return _to_ms(day.replace(day=1))


def period_start(timestamp_ms: int, granularity: Granularity) -> int:
    if granularity == "daily":
        return daily_start(timestamp_ms)
    if granularity == "weekly":
        return weekly_start(timestamp_ms)
    if granularity == "monthly":
        return monthly_start(timestamp_ms)
    raise ValueError(f"Unknown granularity: {granularity}")


def period_end(start_ms: int, granularity: Granularity) -> int:
    """Exclusive end of the period, i.e. the next period's start."""
    day = _to_date(start_ms)
    if granularity == "daily":
        return _to_ms(day + timedelta(days=1))
    if granularity == "weekly":
        return _to_ms(day + timedelta(days=7))
    if granularity == "monthly":
        year = day.year + day.month // 12
        month = day.month % 12 + 1
        return _to_ms(date(year, month, 1))
    raise ValueError(f"Unknown granularity: {granularity}")


def previous_period_start(now_ms: int, granularity: Granularity) -> int:
    """
    Start of the most recent period that has already closed at now_ms.
    Used by the rollup cron ("yesterday", "last week", "last month").
    """
    current = period_start(now_ms, granularity)
    # One millisecond before the current boundary lies in the previous period
    return period_start(current - 1, granularity)


def contains(start_ms: int, granularity: Granularity, timestamp_ms: int) -> bool:
    return start_ms <= timestamp_ms < period_end(start_ms, granularity)


def period_label(granularity: Granularity) -> str:
    return {"daily": "day", "weekly": "week", "monthly": "month"}[granularity]


def format_period_date(start_ms: int) -> str:
    """e.g. 'March 3, 2024' for prompts."""
    day = _to_date(start_ms)
    return f"{day.strftime('%B')} {day.day}, {day.year}"


def now_ms() -> int:
    return int(time.time() * 1000)
