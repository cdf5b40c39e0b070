"""UTC helpers shared by models, repositories and services.

All persisted timestamps are timezone-aware UTC. Naive values are assumed to
already be UTC.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Return `value` as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_millis(timestamp_ms: int) -> datetime:
    """Convert milliseconds since the epoch to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)


def to_millis(moment: datetime) -> int:
    """Convert a datetime to milliseconds since the epoch."""
    return int(ensure_utc(moment).timestamp() * 1000)
