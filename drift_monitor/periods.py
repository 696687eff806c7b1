"""
Time bucketing for metric aggregates.

Aggregates are keyed by the start of the period an observation falls into.
All timestamps are timezone-aware UTC; naive datetimes are assumed to be UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Tuple

from .models import PeriodType


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def period_bounds(ts: datetime, period_type: PeriodType) -> Tuple[datetime, datetime]:
    """
    Return ``(period_start, period_end)`` for the bucket containing ``ts``.

    Hourly buckets start on the hour, daily buckets at midnight, weekly
    buckets at midnight on the preceding Sunday.

    Example:
        >>> period_bounds(datetime(2026, 3, 4, 15, 42, tzinfo=timezone.utc), PeriodType.HOURLY)
        (datetime(2026, 3, 4, 15, 0, tzinfo=...), datetime(2026, 3, 4, 16, 0, tzinfo=...))
    """
    ts = ensure_utc(ts)
    period_type = PeriodType(period_type)

    if period_type == PeriodType.HOURLY:
        start = ts.replace(minute=0, second=0, microsecond=0)
        return start, start + timedelta(hours=1)

    start = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if period_type == PeriodType.DAILY:
        return start, start + timedelta(days=1)

    # weekday(): Monday=0 .. Sunday=6
    start -= timedelta(days=(start.weekday() + 1) % 7)
    return start, start + timedelta(weeks=1)
