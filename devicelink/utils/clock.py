"""Service clock.

All expiry decisions go through ``utcnow`` so that code TTLs, token expiry
and the exchange grace window share one notion of "now".
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back naive; they are always stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_timestamp(value: datetime) -> int:
    return int(as_utc(value).timestamp())


def from_timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)
