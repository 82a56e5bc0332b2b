"""Epoch-millisecond <-> datetime conversion.

Rows store timestamps as integer milliseconds since the Unix epoch; display
objects carry timezone-aware UTC datetimes. Integer arithmetic on timedelta keeps
the conversion exact in both directions.
"""

from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def from_millis(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


def to_millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        raise ValueError(f"Naive datetime cannot be stored: {dt!r}")
    return (dt - EPOCH) // _ONE_MS


def truncate_to_millis(dt: datetime) -> datetime:
    """Drop sub-millisecond precision so the value survives a row round-trip."""
    return from_millis(to_millis(dt))


def now_utc() -> datetime:
    return truncate_to_millis(datetime.now(timezone.utc))
