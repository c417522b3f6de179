"""
Market structure: range position (premium/discount), FVG and order-block
detection, previous-day high/low.
"""
from typing import Optional, Tuple

import pandas as pd

from ..core.constants import ONE_DAY_MS, RangeZone
from ..core.models import MarketStructure, StructureZone


# ── Range position ───────────────────────────────────────────────────────────

def range_position(df: pd.DataFrame, price: float, lookback: int = 50) -> Tuple[float, Optional[float], Optional[float]]:
    """
    Where price sits in the recent high-low range, 0 (low) to 1 (high).
    Returns (position, range_high, range_low). A flat or empty range is 0.5.
    """
    if len(df) == 0:
        return 0.5, None, None
    recent = df.tail(lookback)
    high = float(recent["high"].max())
    low = float(recent["low"].min())
    if high - low <= 0:
        return 0.5, high, low
    position = (price - low) / (high - low)
    return min(max(position, 0.0), 1.0), high, low


def classify_zone(position: float, band: float = 0.05) -> RangeZone:
    """PREMIUM above the midpoint band, DISCOUNT below it."""
    if position > 0.5 + band:
        return RangeZone.PREMIUM
    if position < 0.5 - band:
        return RangeZone.DISCOUNT
    return RangeZone.EQUILIBRIUM


# ── FVG Detection ────────────────────────────────────────────────────────────

def detect_fvg(df: pd.DataFrame) -> Optional[StructureZone]:
    """
    Fair value gap on the last three candles.
    Bull: low[i] > high[i-2]. Bear: high[i] < low[i-2].
    """
    if len(df) < 3:
        return None
    first = df.iloc[-3]
    last = df.iloc[-1]
    if last["low"] > first["high"]:
        return StructureZone("FVG", True, top=float(last["low"]), bottom=float(first["high"]))
    if last["high"] < first["low"]:
        return StructureZone("FVG", False, top=float(first["low"]), bottom=float(last["high"]))
    return None


# ── Order Block Detection ────────────────────────────────────────────────────

def detect_order_block(df: pd.DataFrame, impulse_ratio: float = 1.1) -> Optional[StructureZone]:
    """
    Most recent order block: the last opposing candle before an impulse that
    closes beyond it with a body at least `impulse_ratio` times larger.
    """
    if len(df) < 4:
        return None

    opens = df["open"].values
    closes = df["close"].values
    highs = df["high"].values
    lows = df["low"].values

    for i in range(len(df) - 1, 0, -1):
        impulse_body = abs(closes[i] - opens[i])
        ob_body = abs(opens[i - 1] - closes[i - 1])

        # Bull OB: bearish candle, then a bullish close above its high
        if closes[i - 1] < opens[i - 1] and closes[i] > opens[i] and closes[i] > highs[i - 1]:
            if impulse_body > ob_body * impulse_ratio:
                return StructureZone("OB", True, top=float(highs[i - 1]), bottom=float(lows[i - 1]))

        # Bear OB: bullish candle, then a bearish close below its low
        if closes[i - 1] > opens[i - 1] and closes[i] < opens[i] and closes[i] < lows[i - 1]:
            if impulse_body > ob_body * impulse_ratio:
                return StructureZone("OB", False, top=float(highs[i - 1]), bottom=float(lows[i - 1]))
    return None


# ── Previous-day levels ──────────────────────────────────────────────────────

def previous_day_levels(df: pd.DataFrame) -> Tuple[Optional[float], Optional[float]]:
    """High and low of the UTC day before the last candle's day."""
    if len(df) == 0:
        return None, None
    last_time = int(df["time"].iloc[-1])
    today = last_time - last_time % ONE_DAY_MS
    prev = df[(df["time"] >= today - ONE_DAY_MS) & (df["time"] < today)]
    if len(prev) == 0:
        return None, None
    return float(prev["high"].max()), float(prev["low"].min())


def analyze_structure(
    df_m5: pd.DataFrame,
    df_m15: pd.DataFrame,
    price: float,
    lookback: int = 50,
    zone_band: float = 0.05,
) -> MarketStructure:
    """Full structure summary for one instrument."""
    position, high, low = range_position(df_m5, price, lookback)
    prev_high, prev_low = previous_day_levels(df_m15)
    return MarketStructure(
        range_position=position,
        zone=classify_zone(position, zone_band),
        range_high=high,
        range_low=low,
        fvg=detect_fvg(df_m5),
        order_block=detect_order_block(df_m5),
        prev_high=prev_high,
        prev_low=prev_low,
    )
