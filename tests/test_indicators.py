"""
Tests for sentinel_trader/indicators/technical.py
All tests are self-contained; candles come from conftest generators.
"""
import pandas as pd
import pytest

from conftest import BASE_MS, MINUTE, flat_candles, make_candles
from sentinel_trader.core import Candle
from sentinel_trader.indicators import technical as ind


def _rising(n: int, start: float = 2000.0, step: float = 2.0):
    """Clean staircase: every candle opens at the last close and rises by `step`."""
    candles = []
    for i in range(n):
        o = start + i * step
        c = o + step
        candles.append(Candle(o, c + 0.5, o - 0.5, c, BASE_MS + i * 5 * MINUTE, is_closed=True))
    return candles


# ── candles_to_frame() ────────────────────────────────────────────────────────

class TestCandlesToFrame:
    def test_columns(self):
        df = ind.candles_to_frame(make_candles(5))
        assert list(df.columns) == ["time", "open", "high", "low", "close", "volume"]
        assert len(df) == 5

    def test_empty(self):
        df = ind.candles_to_frame([])
        assert len(df) == 0
        assert "close" in df.columns


# ── ema() / ema_step() / sma() ────────────────────────────────────────────────

class TestMovingAverages:
    def test_ema_constant_series(self):
        assert ind.ema(pd.Series([5.0] * 30), 20) == pytest.approx(5.0)

    def test_ema_empty(self):
        assert ind.ema(pd.Series([], dtype=float), 20) == 0.0

    def test_ema_follows_trend(self):
        series = pd.Series([float(i) for i in range(100)])
        value = ind.ema(series, 20)
        assert 80.0 < value < 99.0

    def test_ema_step_period_one_is_price(self):
        assert ind.ema_step(100.0, 110.0, 1) == pytest.approx(110.0)

    def test_ema_step_moves_toward_price(self):
        value = ind.ema_step(100.0, 110.0, 20)
        assert 100.0 < value < 110.0
        assert value == pytest.approx(110.0 * 2 / 21 + 100.0 * 19 / 21)

    def test_sma_uses_tail(self):
        series = pd.Series([1.0, 2.0, 3.0, 4.0, 5.0])
        assert ind.sma(series, 2) == pytest.approx(4.5)

    def test_sma_shorter_than_period(self):
        assert ind.sma(pd.Series([2.0, 4.0]), 50) == pytest.approx(3.0)


# ── rsi() ─────────────────────────────────────────────────────────────────────

class TestRsi:
    def test_rsi_returns_value_in_range(self):
        value = ind.rsi(ind.candles_to_frame(make_candles(50)))
        assert isinstance(value, float)
        assert 0.0 <= value <= 100.0

    def test_rsi_short_history_is_neutral(self):
        assert ind.rsi(ind.candles_to_frame(make_candles(10))) == 50.0

    def test_rsi_only_gains_is_100(self):
        assert ind.rsi(ind.candles_to_frame(_rising(30))) == 100.0

    def test_rsi_flat_is_50(self):
        assert ind.rsi(ind.candles_to_frame(flat_candles(30))) == 50.0

    def test_rsi_downtrend_is_low(self):
        df = ind.candles_to_frame(make_candles(60, trend=-3.0, volatility=0.5))
        assert ind.rsi(df) < 30.0


# ── linear_regression_slope() ─────────────────────────────────────────────────

class TestSlope:
    def test_linear_series(self):
        values = [100.0 + 2.0 * i for i in range(20)]
        assert ind.linear_regression_slope(values, 10) == pytest.approx(2.0)

    def test_falling_series(self):
        values = [100.0 - 0.5 * i for i in range(10)]
        assert ind.linear_regression_slope(values, 10) == pytest.approx(-0.5)

    def test_too_few_points(self):
        assert ind.linear_regression_slope([100.0], 10) == 0.0
        assert ind.linear_regression_slope([], 10) == 0.0


# ── bollinger() ───────────────────────────────────────────────────────────────

class TestBollinger:
    def test_constant_prices_collapse_bands(self):
        bands = ind.bollinger(ind.candles_to_frame(flat_candles(25)))
        assert bands["upper"] == pytest.approx(2000.0)
        assert bands["lower"] == pytest.approx(2000.0)

    def test_band_ordering(self):
        bands = ind.bollinger(ind.candles_to_frame(make_candles(40, volatility=3.0)))
        assert bands["lower"] < bands["middle"] < bands["upper"]

    def test_symmetric_around_middle(self):
        bands = ind.bollinger(ind.candles_to_frame(make_candles(40, volatility=3.0)))
        assert bands["upper"] - bands["middle"] == pytest.approx(bands["middle"] - bands["lower"])


# ── adx() ─────────────────────────────────────────────────────────────────────

class TestAdx:
    def test_short_history_is_zero(self):
        assert ind.adx(ind.candles_to_frame(make_candles(10))) == 0.0

    def test_clean_trend_is_strong(self):
        assert ind.adx(ind.candles_to_frame(_rising(40))) > 90.0

    def test_range_0_100(self):
        value = ind.adx(ind.candles_to_frame(make_candles(80, volatility=2.0)))
        assert 0.0 <= value <= 100.0

    def test_flat_market_is_zero(self):
        assert ind.adx(ind.candles_to_frame(flat_candles(30))) == 0.0


# ── vwap() ────────────────────────────────────────────────────────────────────

class TestVwap:
    def test_constant_price(self):
        assert ind.vwap(ind.candles_to_frame(flat_candles(10, spread=0.0))) == pytest.approx(2000.0)

    def test_resets_at_utc_midnight(self):
        midnight = BASE_MS - BASE_MS % (24 * 60 * MINUTE) + 24 * 60 * MINUTE
        candles = [
            Candle(1000.0, 1000.0, 1000.0, 1000.0, midnight - 10 * MINUTE, is_closed=True, volume=50),
            Candle(2000.0, 2000.0, 2000.0, 2000.0, midnight, is_closed=True, volume=5),
            Candle(2000.0, 2000.0, 2000.0, 2000.0, midnight + 5 * MINUTE, is_closed=True, volume=5),
        ]
        assert ind.vwap(ind.candles_to_frame(candles)) == pytest.approx(2000.0)

    def test_volume_weighting(self):
        candles = [
            Candle(100.0, 100.0, 100.0, 100.0, BASE_MS, is_closed=True, volume=3),
            Candle(200.0, 200.0, 200.0, 200.0, BASE_MS + 5 * MINUTE, is_closed=True, volume=1),
        ]
        assert ind.vwap(ind.candles_to_frame(candles)) == pytest.approx(125.0)

    def test_empty(self):
        assert ind.vwap(ind.candles_to_frame([])) == 0.0
