"""
Time helpers

All timestamps exchanged between components are UTC epoch milliseconds.
"""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Current time as UTC epoch milliseconds"""
    return int(now_utc().timestamp() * 1000)


def ms_to_datetime(timestamp_ms: int) -> datetime:
    """Convert epoch milliseconds back to an aware UTC datetime"""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
