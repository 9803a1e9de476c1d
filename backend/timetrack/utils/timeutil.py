import math
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC ``now``; the database stores naive UTC timestamps."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive database timestamp for serialization."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def whole_seconds_between(start: datetime, end: datetime) -> int:
    return math.floor((to_naive_utc(end) - to_naive_utc(start)).total_seconds())
