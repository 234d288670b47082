"""Time helpers. All stored timestamps are naive UTC."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a client-supplied timestamp to naive UTC for comparisons."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
