"""
Timestamp utilities for consistent time handling across the system.

Stored timestamps are Unix epoch milliseconds.
"""

import time
from datetime import datetime
from typing import Optional

MS_PER_HOUR = 3600000


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def to_datetime(timestamp_ms: Optional[int] = None) -> datetime:
    """Convert an epoch-millisecond timestamp to a datetime object.

    Args:
        timestamp_ms: Unix timestamp in milliseconds (optional, uses current time if None)

    Returns:
        datetime object
    """
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    return datetime.fromtimestamp(timestamp_ms / 1000)


def age_hours(created_at_ms: int, now: Optional[int] = None) -> float:
    """Hours elapsed between created_at_ms and now (epoch milliseconds)."""
    if now is None:
        now = now_ms()
    return (now - created_at_ms) / MS_PER_HOUR
