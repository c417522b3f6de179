"""Indicator library and market-structure analysis."""

from .market_structure import (
    analyze_structure,
    classify_zone,
    detect_fvg,
    detect_order_block,
    previous_day_levels,
    range_position,
)
from .technical import (
    adx,
    bollinger,
    candles_to_frame,
    ema,
    ema_step,
    linear_regression_slope,
    rsi,
    sma,
    vwap,
)

__all__ = [
    "analyze_structure",
    "classify_zone",
    "detect_fvg",
    "detect_order_block",
    "previous_day_levels",
    "range_position",
    "adx",
    "bollinger",
    "candles_to_frame",
    "ema",
    "ema_step",
    "linear_regression_slope",
    "rsi",
    "sma",
    "vwap",
]
