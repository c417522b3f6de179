"""Utility modules."""

from .config_loader import REQUIRED_SECTIONS, ConfigLoader, env_secret, lookup, require_sections
from .time_utils import format_ts, minute_of_day, now_ms, to_datetime, utc_day_start

__all__ = [
    "REQUIRED_SECTIONS",
    "ConfigLoader",
    "env_secret",
    "lookup",
    "require_sections",
    "format_ts",
    "minute_of_day",
    "now_ms",
    "to_datetime",
    "utc_day_start",
]
