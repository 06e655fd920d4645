"""
Helper Functions
================

Common utility functions used across the application.
"""

from datetime import datetime, timedelta, timezone
from typing import Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo), convert aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    return (as_utc(dt) - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: Union[int, str]) -> datetime:
    """
    Build a UTC datetime from epoch milliseconds.

    Stores send these as decimal strings; they are parsed as base-10
    integers so no float rounding creeps in.
    """
    ms = int(value, 10) if isinstance(value, str) else int(value)
    return EPOCH + timedelta(milliseconds=ms)
