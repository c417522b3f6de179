"""
UTC time helpers on epoch milliseconds.

All functions are pure. Engine time is always integer epoch milliseconds.
"""

import time
from datetime import datetime, timezone

from ..core.constants import ONE_DAY_MS, ONE_MINUTE_MS


def now_ms() -> int:
    """Wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


def utc_day_start(ts_ms: int) -> int:
    """Epoch ms of the UTC midnight at or before ts_ms."""
    return ts_ms - ts_ms % ONE_DAY_MS


def minute_of_day(ts_ms: int) -> int:
    """Minutes elapsed since UTC midnight."""
    return (ts_ms % ONE_DAY_MS) // ONE_MINUTE_MS


def to_datetime(ts_ms: int) -> datetime:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)


def format_ts(ts_ms: int, fmt: str = "%Y%m%d_%H%M%S") -> str:
    return to_datetime(ts_ms).strftime(fmt)
