"""
Clock helpers shared by the store and the policy engine.

Timestamps are stored as INTEGER unix milliseconds so ordering and range
comparisons happen in SQL without string parsing or timezone conversion.
Every in-memory datetime is timezone-aware UTC truncated to milliseconds,
which makes a stored record compare equal to the one that was inserted.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def truncate_ms(value: datetime) -> datetime:
    """Return ``value`` as aware UTC with sub-millisecond precision dropped."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utcnow() -> datetime:
    """Current UTC time at millisecond precision. The default engine clock."""
    return truncate_ms(datetime.now(timezone.utc))


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to integer unix milliseconds."""
    return (truncate_ms(value) - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int | None) -> datetime | None:
    """Convert integer unix milliseconds back to an aware UTC datetime."""
    if value is None:
        return None
    return _EPOCH + timedelta(milliseconds=int(value))
