from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware_utc(value: datetime) -> datetime:
    """
    Ensure datetime is timezone-aware in UTC.

    - If naive, assume it is UTC and attach tzinfo.
    - If aware, convert to UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert datetime to aware UTC; pass None through."""
    if value is None:
        return None
    return ensure_aware_utc(value)


def millis_between(start: datetime, end: datetime) -> int:
    delta = ensure_aware_utc(end) - ensure_aware_utc(start)
    return delta // timedelta(milliseconds=1)


def fmt_ts(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return ensure_aware_utc(value).strftime("%Y-%m-%d %H:%M:%S")
