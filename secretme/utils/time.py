"""
Time utilities.

All timestamps are stored as naive UTC datetimes.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Get the current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be naive or aware)

    Returns:
        Naive datetime in UTC; naive input is assumed to already be UTC
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Get the naive UTC datetime `days` days before `now`."""
    return (now or utcnow()) - timedelta(days=days)


def seconds_until(moment: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole seconds from `now` until `moment`, rounded up, never negative.

    Used for the Retry-After header.
    """
    delta = (to_naive_utc(moment) - (now or utcnow())).total_seconds()
    return max(0, math.ceil(delta))


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    """Format a naive UTC datetime as ISO 8601 with a Z suffix."""
    if dt is None:
        return None
    return to_naive_utc(dt).isoformat() + "Z"
