"""
Time helpers.

All timestamps are stored as timezone-naive UTC datetimes so SQLite and
PostgreSQL compare them the same way.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_timestamp(ts_str: str) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp ("Z" suffix accepted) into naive UTC.
    Returns None if the string is empty or cannot be parsed.
    """
    if not ts_str:
        return None
    try:
        if ts_str.endswith("Z"):
            ts_str = ts_str[:-1] + "+00:00"
        return to_naive_utc(datetime.fromisoformat(ts_str))
    except (ValueError, TypeError):
        return None


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None
