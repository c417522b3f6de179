"""
Tests for sentinel_trader/strategy/strategies.py
Each strategy is driven through a hand-built StrategyContext.
"""
import pytest

from conftest import BASE_MS, MINUTE, open_buy
from sentinel_trader.core import (
    Advisory,
    AssetState,
    Candle,
    Sentiment,
    SkipCode,
    SkipReason,
    StructureZone,
    TradeIntent,
    TradeType,
    TrendDirection,
)
from sentinel_trader.strategy import (
    StrategyConfig,
    StrategyContext,
    advisory_driven,
    evaluate_guard,
    mean_reversion,
    session_breakout,
    trend_follow,
)

DAY_START = BASE_MS - BASE_MS % (24 * 60 * MINUTE)
IN_SESSION = DAY_START + 14 * 60 * MINUTE  # 14:00 UTC


def _ctx(instrument, asset, now=BASE_MS, trades=(), candles=(), advisory=None):
    return StrategyContext(
        instrument=instrument,
        asset=asset,
        guard=evaluate_guard(instrument.symbol, list(trades), now),
        candles=list(candles),
        advisory=advisory or Advisory.no_opinion(),
        now_ms=now,
        config=StrategyConfig(),
    )


@pytest.fixture
def trending_up(gold_asset):
    """Stage-2 friendly uptrend sitting on EMA20."""
    a = gold_asset
    a.current_price = 2000.0
    a.ema20 = 2001.0
    a.ema200 = 1980.0
    a.trend = TrendDirection.UP
    a.slope = 0.2
    a.adx = 30.0
    return a


# ── trend_follow ──────────────────────────────────────────────────────────────

class TestTrendFollow:
    def test_pullback_in_uptrend_buys_at_ask(self, gold, trending_up):
        signal = trend_follow(_ctx(gold, trending_up))
        assert isinstance(signal, TradeIntent)
        assert signal.side == TradeType.BUY
        assert signal.entry_price == 2000.1
        assert signal.strategy == "TREND_FOLLOW"
        assert signal.confidence == 60
        assert signal.stop_loss is None

    def test_adx_below_stage_zero_minimum(self, gold, trending_up):
        # A trade 30 minutes ago keeps the guard at stage 0 (ADX minimum 25)
        trending_up.adx = 18.0
        trades = [open_buy(open_time=BASE_MS - 30 * MINUTE)]
        signal = trend_follow(_ctx(gold, trending_up, trades=trades))
        assert isinstance(signal, SkipReason)
        assert signal.code == SkipCode.ADX_TOO_LOW
        assert signal.context["adx"] == 18.0
        assert signal.context["threshold"] == 25
        assert signal.context["stage"] == 0

    def test_weak_slope(self, gold, trending_up):
        trending_up.slope = 0.0
        assert trend_follow(_ctx(gold, trending_up)).code == SkipCode.SLOPE_TOO_WEAK

    def test_no_pullback(self, gold, trending_up):
        trending_up.ema20 = 1980.0
        assert trend_follow(_ctx(gold, trending_up)).code == SkipCode.NO_PULLBACK

    def test_premium_rejects_buy(self, gold, trending_up):
        trending_up.structure.range_position = 0.95
        assert trend_follow(_ctx(gold, trending_up)).code == SkipCode.PREMIUM_ZONE

    def test_downtrend_sells_at_bid(self, gold, trending_up):
        trending_up.trend = TrendDirection.DOWN
        trending_up.slope = -0.2
        signal = trend_follow(_ctx(gold, trending_up))
        assert signal.side == TradeType.SELL
        assert signal.entry_price == 1999.9

    def test_discount_rejects_sell(self, gold, trending_up):
        trending_up.trend = TrendDirection.DOWN
        trending_up.slope = -0.2
        trending_up.structure.range_position = 0.05
        assert trend_follow(_ctx(gold, trending_up)).code == SkipCode.DISCOUNT_ZONE

    def test_confluence_boosts_confidence(self, gold, trending_up):
        trending_up.structure.fvg = StructureZone("FVG", True, 2002.0, 1999.0)
        trending_up.structure.order_block = StructureZone("OB", True, 1998.0, 1995.0)
        signal = trend_follow(_ctx(gold, trending_up))
        assert signal.confidence == 80
        assert "FVG+OB" in signal.reason

    def test_opposing_confluence_ignored(self, gold, trending_up):
        trending_up.structure.fvg = StructureZone("FVG", False, 2002.0, 1999.0)
        assert trend_follow(_ctx(gold, trending_up)).confidence == 60


# ── session_breakout ──────────────────────────────────────────────────────────

def _session_candles(prior_low=18400.0, prior_high=18700.0, cur_low=18500.0, cur_high=18610.0):
    prior = [
        Candle(18550.0, prior_high, prior_low, 18550.0, IN_SESSION - (10 - i) * 5 * MINUTE, is_closed=True)
        for i in range(9)
    ]
    current = Candle(18550.0, cur_high, cur_low, 18550.0, IN_SESSION)
    return prior + [current]


@pytest.fixture
def nas_asset(nas):
    asset = AssetState.create(nas)
    asset.current_price = 18500.0
    asset.bid = 18499.0
    asset.ask = 18501.0
    asset.bollinger = {"upper": 18510.0, "middle": 18500.0, "lower": 18490.0}
    return asset


class TestSessionBreakout:
    def test_outside_session(self, nas, nas_asset):
        signal = session_breakout(_ctx(nas, nas_asset, now=BASE_MS, candles=_session_candles()))
        assert signal.code == SkipCode.OUTSIDE_SESSION

    def test_no_session_configured(self, gold, gold_asset):
        assert session_breakout(_ctx(gold, gold_asset, now=IN_SESSION)).code == SkipCode.OUTSIDE_SESSION

    def test_needs_candles(self, nas, nas_asset):
        signal = session_breakout(_ctx(nas, nas_asset, now=IN_SESSION, candles=_session_candles()[-5:]))
        assert signal.code == SkipCode.WARMUP

    def test_sweep_low_and_reclaim_buys(self, nas, nas_asset):
        candles = _session_candles(cur_low=18350.0)
        signal = session_breakout(_ctx(nas, nas_asset, now=IN_SESSION, candles=candles))
        assert isinstance(signal, TradeIntent)
        assert signal.side == TradeType.BUY
        assert signal.stop_loss == pytest.approx(18350.0 * (1 - 0.0002))
        assert signal.stop_loss < signal.entry_price

    def test_sweep_high_and_reject_sells(self, nas, nas_asset):
        candles = _session_candles(cur_high=18750.0)
        signal = session_breakout(_ctx(nas, nas_asset, now=IN_SESSION, candles=candles))
        assert signal.side == TradeType.SELL
        assert signal.stop_loss == pytest.approx(18750.0 * (1 + 0.0002))

    def test_band_breakout_with_trend(self, nas, nas_asset):
        nas_asset.current_price = 18600.0
        nas_asset.ask = 18601.0
        nas_asset.trend = TrendDirection.UP
        nas_asset.bollinger = {"upper": 18550.0, "middle": 18500.0, "lower": 18450.0}
        signal = session_breakout(_ctx(nas, nas_asset, now=IN_SESSION, candles=_session_candles()))
        assert signal.side == TradeType.BUY
        assert signal.entry_price == 18601.0

    def test_breakout_against_trend_ignored(self, nas, nas_asset):
        nas_asset.current_price = 18600.0
        nas_asset.trend = TrendDirection.DOWN
        nas_asset.bollinger = {"upper": 18550.0, "middle": 18500.0, "lower": 18450.0}
        signal = session_breakout(_ctx(nas, nas_asset, now=IN_SESSION, candles=_session_candles()))
        assert signal.code == SkipCode.NO_SETUP

    def test_narrow_bands_no_setup(self, nas, nas_asset):
        signal = session_breakout(_ctx(nas, nas_asset, now=IN_SESSION, candles=_session_candles()))
        assert signal.code == SkipCode.NO_SETUP
        assert signal.context["bandExpanded"] is False


# ── advisory_driven ───────────────────────────────────────────────────────────

class TestAdvisoryDriven:
    def _advice(self, sentiment=Sentiment.BULLISH, confidence=85.0, age_min=1):
        return Advisory(sentiment, confidence, "strong bids", BASE_MS - age_min * MINUTE)

    def test_agreeing_advisory_buys(self, gold, trending_up):
        signal = advisory_driven(_ctx(gold, trending_up, advisory=self._advice()))
        assert signal.side == TradeType.BUY
        assert signal.strategy == "ADVISORY"
        assert signal.reason == "Advisory BULLISH (85%): strong bids"
        assert signal.confidence == 85.0

    def test_no_opinion_is_stale(self, gold, trending_up):
        assert advisory_driven(_ctx(gold, trending_up)).code == SkipCode.ADVISORY_STALE

    def test_old_advisory_is_stale(self, gold, trending_up):
        signal = advisory_driven(_ctx(gold, trending_up, advisory=self._advice(age_min=31)))
        assert signal.code == SkipCode.ADVISORY_STALE

    def test_low_confidence(self, gold, trending_up):
        signal = advisory_driven(_ctx(gold, trending_up, advisory=self._advice(confidence=60.0)))
        assert signal.code == SkipCode.ADVISORY_LOW_CONFIDENCE

    def test_disagrees_with_trend(self, gold, trending_up):
        signal = advisory_driven(_ctx(gold, trending_up, advisory=self._advice(Sentiment.BEARISH)))
        assert signal.code == SkipCode.ADVISORY_DISAGREES

    def test_neutral_never_trades(self, gold, trending_up):
        signal = advisory_driven(_ctx(gold, trending_up, advisory=self._advice(Sentiment.NEUTRAL)))
        assert signal.code == SkipCode.ADVISORY_DISAGREES

    def test_range_filter_applies(self, gold, trending_up):
        trending_up.structure.range_position = 0.95
        signal = advisory_driven(_ctx(gold, trending_up, advisory=self._advice()))
        assert signal.code == SkipCode.PREMIUM_ZONE


# ── mean_reversion ────────────────────────────────────────────────────────────

@pytest.fixture
def stretched_down(gold_asset):
    a = gold_asset
    a.ema20 = 2000.0
    a.current_price = 1970.0
    a.bid = 1969.9
    a.ask = 1970.1
    a.rsi = 25.0
    a.adx = 15.0
    a.structure.range_position = 0.1
    return a


class TestMeanReversion:
    def test_buys_back_toward_mean(self, gold, stretched_down):
        signal = mean_reversion(_ctx(gold, stretched_down))
        assert isinstance(signal, TradeIntent)
        assert signal.side == TradeType.BUY
        d = 2000.0 - 1970.1
        assert signal.stop_loss == pytest.approx(1970.1 - d)
        prices = [level.price for level in signal.tp_levels]
        assert prices == pytest.approx([1970.1 + d, 1970.1 + 2 * d, 1970.1 + 3 * d])
        assert sum(level.percentage for level in signal.tp_levels) == pytest.approx(1.0)

    def test_small_deviation(self, gold, stretched_down):
        stretched_down.current_price = 1995.0
        assert mean_reversion(_ctx(gold, stretched_down)).code == SkipCode.DEVIATION_TOO_SMALL

    def test_rsi_not_extreme(self, gold, stretched_down):
        stretched_down.rsi = 45.0
        assert mean_reversion(_ctx(gold, stretched_down)).code == SkipCode.RSI_NOT_EXTREME

    def test_range_not_extreme(self, gold, stretched_down):
        stretched_down.structure.range_position = 0.5
        assert mean_reversion(_ctx(gold, stretched_down)).code == SkipCode.RANGE_NOT_EXTREME

    def test_strong_trend_rejected(self, gold, stretched_down):
        stretched_down.adx = 40.0
        assert mean_reversion(_ctx(gold, stretched_down)).code == SkipCode.ADX_TOO_HIGH

    def test_minimum_target_distance(self, gold, stretched_down):
        # EMA20 close to the ask: target distance floors at 0.3% of entry
        stretched_down.ema20 = 1990.0
        stretched_down.current_price = 1960.0
        stretched_down.ask = 1989.0
        signal = mean_reversion(_ctx(gold, stretched_down))
        assert signal.stop_loss == pytest.approx(1989.0 - 1989.0 * 0.003)

    def test_stretched_up_sells(self, gold, stretched_down):
        stretched_down.current_price = 2030.0
        stretched_down.bid = 2029.9
        stretched_down.rsi = 80.0
        stretched_down.structure.range_position = 0.9
        signal = mean_reversion(_ctx(gold, stretched_down))
        assert signal.side == TradeType.SELL
        assert signal.stop_loss > signal.entry_price
