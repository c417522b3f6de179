"""
Technical indicators: EMA, SMA, RSI, regression slope, Bollinger, ADX, VWAP.

Pure functions over pandas frames/series. Each returns the latest value as
a float (or a small dict), with a neutral fallback when history is short.
"""
from typing import Dict, Iterable, Sequence

import numpy as np
import pandas as pd

from ..core.constants import ONE_DAY_MS
from ..core.models import Candle

_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """Candle list -> OHLCV frame (time in epoch ms)."""
    rows = [
        {"time": c.time, "open": c.open, "high": c.high, "low": c.low, "close": c.close, "volume": c.volume}
        for c in candles
    ]
    return pd.DataFrame(rows, columns=_COLUMNS)


def ema(series: pd.Series, period: int) -> float:
    """Exponential moving average of a series, seeded on the first value."""
    if len(series) == 0:
        return 0.0
    return float(series.ewm(span=period, adjust=False).mean().iloc[-1])


def ema_step(previous: float, price: float, period: int) -> float:
    """One incremental EMA update, used per tick."""
    k = 2.0 / (period + 1)
    return price * k + previous * (1 - k)


def sma(series: pd.Series, period: int) -> float:
    """Simple moving average over the last `period` values (or all, if fewer)."""
    if len(series) == 0:
        return 0.0
    return float(series.tail(period).mean())


def rsi(df: pd.DataFrame, period: int = 14) -> float:
    """Relative Strength Index on closes."""
    if len(df) < period + 1:
        return 50.0
    delta = df["close"].diff()
    gain = float(delta.clip(lower=0).rolling(period).mean().iloc[-1])
    loss = float((-delta.clip(upper=0)).rolling(period).mean().iloc[-1])
    if loss <= 0:
        return 100.0 if gain > 0 else 50.0
    rs = gain / loss
    return float(100 - 100 / (1 + rs))


def linear_regression_slope(values: Sequence[float], points: int = 10) -> float:
    """Least-squares slope (price units per sample) over the last `points` values."""
    tail = np.asarray(list(values)[-points:], dtype=float)
    if len(tail) < 2:
        return 0.0
    x = np.arange(len(tail), dtype=float)
    slope, _ = np.polyfit(x, tail, 1)
    return float(slope)


def bollinger(df: pd.DataFrame, period: int = 20, std_mult: float = 2.0) -> Dict[str, float]:
    """Bollinger bands on closes (population standard deviation)."""
    closes = df["close"]
    if len(closes) == 0:
        return {"upper": 0.0, "middle": 0.0, "lower": 0.0}
    window = closes.tail(period)
    middle = float(window.mean())
    std = float(window.std(ddof=0))
    return {"upper": middle + std_mult * std, "middle": middle, "lower": middle - std_mult * std}


def adx(df: pd.DataFrame, period: int = 14) -> float:
    """
    Trend strength, 0-100.

    Returns the latest DX computed from Wilder-smoothed directional movement,
    used as a stand-in for ADX (no second smoothing pass over DX history).
    """
    if len(df) < period + 1:
        return 0.0
    h, l, c = df["high"], df["low"], df["close"]
    up = h.diff()
    down = -l.diff()
    plus_dm = up.where((up > down) & (up > 0), 0.0)
    minus_dm = down.where((down > up) & (down > 0), 0.0)
    tr = pd.concat([h - l, (h - c.shift(1)).abs(), (l - c.shift(1)).abs()], axis=1).max(axis=1)

    alpha = 1.0 / period
    atr_s = tr.ewm(alpha=alpha, adjust=False).mean()
    plus_s = plus_dm.ewm(alpha=alpha, adjust=False).mean()
    minus_s = minus_dm.ewm(alpha=alpha, adjust=False).mean()

    atr_last = float(atr_s.iloc[-1])
    if atr_last <= 0:
        return 0.0
    plus_di = 100 * float(plus_s.iloc[-1]) / atr_last
    minus_di = 100 * float(minus_s.iloc[-1]) / atr_last
    di_sum = plus_di + minus_di
    if di_sum <= 0:
        return 0.0
    return float(100 * abs(plus_di - minus_di) / di_sum)


def vwap(df: pd.DataFrame) -> float:
    """Volume-weighted average of typical price since the UTC midnight of the last row."""
    if len(df) == 0:
        return 0.0
    last_time = int(df["time"].iloc[-1])
    session = df[df["time"] >= last_time - last_time % ONE_DAY_MS]
    volume = session["volume"].astype(float)
    if volume.sum() <= 0:
        return float(session["close"].iloc[-1])
    typical = (session["high"] + session["low"] + session["close"]) / 3
    return float((typical * volume).sum() / volume.sum())
