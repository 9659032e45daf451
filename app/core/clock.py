"""Single source of "now" for every expiry, window and watermark decision.

Timestamps are naive UTC, matching the DateTime columns. Tests freeze or
advance time by monkeypatching ``utcnow`` on this module, so callers must
look it up as ``clock.utcnow()`` rather than importing the function.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(value: datetime) -> float:
    """Seconds since the epoch for a naive UTC datetime."""
    return value.replace(tzinfo=timezone.utc).timestamp()


def from_timestamp(value: float) -> datetime:
    """Naive UTC datetime for seconds since the epoch."""
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
