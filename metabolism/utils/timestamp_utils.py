"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_DAY = 24 * 60 * 60


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


def to_iso(timestamp: Optional[float] = None) -> str:
    """Convert timestamp to an ISO-8601 UTC string.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        ISO-8601 string with millisecond precision and a trailing 'Z'
    """
    if timestamp is None:
        timestamp = time.time()
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def is_older_than(mtime: float, days: float, now: Optional[float] = None) -> bool:
    """True when a modification time in seconds lies more than `days` in the past."""
    if now is None:
        now = time.time()
    return mtime < now - days * SECONDS_PER_DAY
