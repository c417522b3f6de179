"""
Entry strategies.

Each strategy is a stateless function over a StrategyContext and returns
either a TradeIntent or a SkipReason explaining why it stood aside. The
evaluator decides which strategies run and in what order.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..core.constants import Sentiment, SkipCode, StrategyId, TradeType, TrendDirection
from ..core.models import (
    Advisory,
    AssetState,
    Candle,
    Instrument,
    SkipReason,
    TradeIntent,
    build_ladder,
)
from ..utils.time_utils import minute_of_day
from .guard_engine import GuardState

Signal = Union[TradeIntent, SkipReason]


@dataclass(frozen=True)
class StrategyConfig:
    """Per-family constants from the `strategies` settings section."""
    warmup_candles: int = 20
    trend_base_confidence: float = 60.0
    fvg_boost: float = 10.0
    ob_boost: float = 10.0
    sweep_lookback: int = 9
    sweep_reclaim_pct: float = 0.0002
    breakout_band_width_pct: float = 0.002
    sweep_confidence: float = 65.0
    breakout_confidence: float = 60.0
    mr_min_tp_pct: float = 0.003
    mr_confidence: float = 55.0
    advisory_max_age_ms: int = 30 * 60 * 1000

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> "StrategyConfig":
        cfg = cfg or {}
        trend = cfg.get("trend_follow", {})
        session = cfg.get("session_breakout", {})
        mr = cfg.get("mean_reversion", {})
        advisory = cfg.get("advisory", {})
        return cls(
            warmup_candles=int(cfg.get("warmup_candles", 20)),
            trend_base_confidence=float(trend.get("base_confidence", 60)),
            fvg_boost=float(trend.get("fvg_boost", 10)),
            ob_boost=float(trend.get("ob_boost", 10)),
            sweep_lookback=int(session.get("sweep_lookback", 9)),
            sweep_reclaim_pct=float(session.get("sweep_reclaim_pct", 0.0002)),
            breakout_band_width_pct=float(session.get("breakout_band_width_pct", 0.002)),
            sweep_confidence=float(session.get("sweep_confidence", 65)),
            breakout_confidence=float(session.get("breakout_confidence", 60)),
            mr_min_tp_pct=float(mr.get("min_tp_pct", 0.003)),
            mr_confidence=float(mr.get("confidence", 55)),
            advisory_max_age_ms=int(advisory.get("max_age_minutes", 30)) * 60 * 1000,
        )


@dataclass
class StrategyContext:
    """Read-only inputs for one evaluation tick."""
    instrument: Instrument
    asset: AssetState
    guard: GuardState
    candles: List[Candle]
    advisory: Advisory
    now_ms: int
    config: StrategyConfig = field(default_factory=StrategyConfig)

    @property
    def symbol(self) -> str:
        return self.instrument.symbol

    def entry_price(self, side: TradeType) -> float:
        """Market fill: ask for buys, bid for sells."""
        return self.asset.ask if side == TradeType.BUY else self.asset.bid


def _skip(code: SkipCode, strategy: StrategyId, message: str, **context) -> SkipReason:
    return SkipReason(code, message, strategy=strategy.value, context=context)


def _range_filter(ctx: StrategyContext, side: TradeType, strategy: StrategyId) -> Optional[SkipReason]:
    """Reject buys deep in premium and sells deep in discount."""
    th = ctx.guard.thresholds
    position = ctx.asset.structure.range_position
    if side == TradeType.BUY and position > th.premium_limit:
        return _skip(SkipCode.PREMIUM_ZONE, strategy,
                     f"Buy rejected: range position {position:.2f} > premium limit {th.premium_limit:.2f}",
                     rangePosition=round(position, 4), limit=th.premium_limit)
    if side == TradeType.SELL and position < th.discount_limit:
        return _skip(SkipCode.DISCOUNT_ZONE, strategy,
                     f"Sell rejected: range position {position:.2f} < discount limit {th.discount_limit:.2f}",
                     rangePosition=round(position, 4), limit=th.discount_limit)
    return None


# ── Trend follow ─────────────────────────────────────────────────────────────

def trend_follow(ctx: StrategyContext) -> Signal:
    """Pullback to EMA20 in the EMA200 trend, confirmed by slope and ADX."""
    sid = StrategyId.TREND_FOLLOW
    asset, th = ctx.asset, ctx.guard.thresholds
    price = asset.current_price

    if asset.adx < th.adx_min:
        return _skip(SkipCode.ADX_TOO_LOW, sid,
                     f"ADX {asset.adx:.1f} below stage {ctx.guard.stage} minimum {th.adx_min:.0f}",
                     adx=round(asset.adx, 2), threshold=th.adx_min, stage=ctx.guard.stage)

    is_up = asset.trend == TrendDirection.UP
    side = TradeType.BUY if is_up else TradeType.SELL
    rel_slope = asset.slope / price if price else 0.0
    if (is_up and rel_slope < th.slope_min) or (not is_up and rel_slope > -th.slope_min):
        return _skip(SkipCode.SLOPE_TOO_WEAK, sid,
                     f"Slope {rel_slope:.6f} does not confirm {asset.trend.value} trend (min {th.slope_min:.6f})",
                     slope=rel_slope, threshold=th.slope_min)

    distance = abs(price - asset.ema20) / price if price else 1.0
    if distance > th.ema_proximity:
        return _skip(SkipCode.NO_PULLBACK, sid,
                     f"Price {distance:.4%} from EMA20, needs within {th.ema_proximity:.4%}",
                     distance=round(distance, 6), threshold=th.ema_proximity)

    rejected = _range_filter(ctx, side, sid)
    if rejected:
        return rejected

    confidence = ctx.config.trend_base_confidence
    confluence = []
    structure = asset.structure
    if structure.fvg and structure.fvg.bullish == is_up:
        confidence += ctx.config.fvg_boost
        confluence.append("FVG")
    if structure.order_block and structure.order_block.bullish == is_up:
        confidence += ctx.config.ob_boost
        confluence.append("OB")

    reason = f"Trend {asset.trend.value}: pullback to EMA20, ADX {asset.adx:.1f}, stage {ctx.guard.stage}"
    if confluence:
        reason += f", confluence {'+'.join(confluence)}"
    return TradeIntent(ctx.symbol, side, ctx.entry_price(side), sid.value, reason, min(confidence, 100.0))


# ── Session breakout / sweep ─────────────────────────────────────────────────

def session_breakout(ctx: StrategyContext) -> Signal:
    """Liquidity sweep with reclaim, or band breakout, inside the session window."""
    sid = StrategyId.SESSION_BREAKOUT
    cfg = ctx.config
    session = ctx.instrument.session
    minute = minute_of_day(ctx.now_ms)
    if session is None or not session.contains(minute):
        return _skip(SkipCode.OUTSIDE_SESSION, sid, f"Outside session window (minute {minute} UTC)",
                     minuteOfDay=minute)

    candles = ctx.candles
    if len(candles) < cfg.sweep_lookback + 1:
        return _skip(SkipCode.WARMUP, sid, f"Need {cfg.sweep_lookback + 1} candles, have {len(candles)}")

    asset = ctx.asset
    price = asset.current_price
    current = candles[-1]
    prior = candles[-(cfg.sweep_lookback + 1):-1]
    lowest = min(c.low for c in prior)
    highest = max(c.high for c in prior)

    # Sweep below the recent low, then reclaim
    if current.low < lowest and price > lowest * (1 + cfg.sweep_reclaim_pct):
        side = TradeType.BUY
        stop = current.low * (1 - cfg.sweep_reclaim_pct)
        return TradeIntent(ctx.symbol, side, ctx.entry_price(side), sid.value,
                           f"Sweep of {cfg.sweep_lookback}-candle low {lowest} reclaimed",
                           cfg.sweep_confidence, stop_loss=stop)
    if current.high > highest and price < highest * (1 - cfg.sweep_reclaim_pct):
        side = TradeType.SELL
        stop = current.high * (1 + cfg.sweep_reclaim_pct)
        return TradeIntent(ctx.symbol, side, ctx.entry_price(side), sid.value,
                           f"Sweep of {cfg.sweep_lookback}-candle high {highest} rejected",
                           cfg.sweep_confidence, stop_loss=stop)

    # Volatility expansion beyond the bands
    bands = asset.bollinger
    expanded = bands["upper"] - bands["lower"] > price * cfg.breakout_band_width_pct
    if expanded and asset.trend == TrendDirection.UP and price > bands["upper"]:
        side = TradeType.BUY
        return TradeIntent(ctx.symbol, side, ctx.entry_price(side), sid.value,
                           "Volatility breakout above upper band", cfg.breakout_confidence)
    if expanded and asset.trend == TrendDirection.DOWN and price < bands["lower"]:
        side = TradeType.SELL
        return TradeIntent(ctx.symbol, side, ctx.entry_price(side), sid.value,
                           "Volatility breakdown below lower band", cfg.breakout_confidence)

    return _skip(SkipCode.NO_SETUP, sid, "No sweep or breakout in session window",
                 low=lowest, high=highest, bandExpanded=expanded)


# ── Advisory driven ──────────────────────────────────────────────────────────

def advisory_driven(ctx: StrategyContext) -> Signal:
    """Trade with the advisory when it is fresh, confident and agrees with the trend."""
    sid = StrategyId.ADVISORY
    advisory = ctx.advisory
    if not advisory.is_fresh(ctx.now_ms, ctx.config.advisory_max_age_ms):
        return _skip(SkipCode.ADVISORY_STALE, sid, "No fresh advisory opinion", updatedAt=advisory.updated_at)

    minimum = ctx.instrument.advisory_min_confidence
    if advisory.confidence < minimum:
        return _skip(SkipCode.ADVISORY_LOW_CONFIDENCE, sid,
                     f"Advisory confidence {advisory.confidence:.0f} below {minimum:.0f}",
                     confidence=advisory.confidence, threshold=minimum)

    trend = ctx.asset.trend
    if advisory.sentiment == Sentiment.BULLISH and trend == TrendDirection.UP:
        side = TradeType.BUY
    elif advisory.sentiment == Sentiment.BEARISH and trend == TrendDirection.DOWN:
        side = TradeType.SELL
    else:
        return _skip(SkipCode.ADVISORY_DISAGREES, sid,
                     f"Advisory {advisory.sentiment.value} does not match {trend.value} trend",
                     sentiment=advisory.sentiment.value, trend=trend.value)

    rejected = _range_filter(ctx, side, sid)
    if rejected:
        return rejected

    reason = f"Advisory {advisory.sentiment.value} ({advisory.confidence:.0f}%): {advisory.reason}"
    return TradeIntent(ctx.symbol, side, ctx.entry_price(side), sid.value, reason, advisory.confidence)


# ── Mean reversion ───────────────────────────────────────────────────────────

def mean_reversion(ctx: StrategyContext) -> Signal:
    """Fade stretched moves back to EMA20 when the market is not trending hard."""
    sid = StrategyId.MEAN_REVERSION
    asset, th = ctx.asset, ctx.guard.thresholds
    price, mean = asset.current_price, asset.ema20
    if mean <= 0:
        return _skip(SkipCode.WARMUP, sid, "EMA20 not ready")

    deviation = (price - mean) / mean
    if abs(deviation) < th.mr_deviation:
        return _skip(SkipCode.DEVIATION_TOO_SMALL, sid,
                     f"Deviation {deviation:.4%} inside {th.mr_deviation:.4%} band",
                     deviation=round(deviation, 6), threshold=th.mr_deviation)

    is_buy = deviation < 0
    if is_buy and asset.rsi > th.rsi_low:
        return _skip(SkipCode.RSI_NOT_EXTREME, sid, f"RSI {asset.rsi:.1f} not below {th.rsi_low:.0f}",
                     rsi=round(asset.rsi, 2), threshold=th.rsi_low)
    if not is_buy and asset.rsi < th.rsi_high:
        return _skip(SkipCode.RSI_NOT_EXTREME, sid, f"RSI {asset.rsi:.1f} not above {th.rsi_high:.0f}",
                     rsi=round(asset.rsi, 2), threshold=th.rsi_high)

    position = asset.structure.range_position
    outer = th.outer_quantile
    if (is_buy and position > outer) or (not is_buy and position < 1 - outer):
        return _skip(SkipCode.RANGE_NOT_EXTREME, sid,
                     f"Range position {position:.2f} not in outer {outer:.0%}",
                     rangePosition=round(position, 4), quantile=outer)

    if asset.adx > th.adx_max:
        return _skip(SkipCode.ADX_TOO_HIGH, sid, f"ADX {asset.adx:.1f} above cap {th.adx_max:.0f}",
                     adx=round(asset.adx, 2), threshold=th.adx_max)

    side = TradeType.BUY if is_buy else TradeType.SELL
    entry = ctx.entry_price(side)
    d = max(abs(mean - entry), entry * ctx.config.mr_min_tp_pct)
    stop = entry - d if is_buy else entry + d
    ladder = tuple(build_ladder(entry, is_buy, (d, 2 * d, 3 * d)))
    reason = f"Mean reversion: {deviation:+.2%} from EMA20, RSI {asset.rsi:.1f}"
    return TradeIntent(ctx.symbol, side, entry, sid.value, reason, ctx.config.mr_confidence,
                       stop_loss=stop, tp_levels=ladder)


STRATEGIES: Dict[StrategyId, Callable[[StrategyContext], Signal]] = {
    StrategyId.TREND_FOLLOW: trend_follow,
    StrategyId.SESSION_BREAKOUT: session_breakout,
    StrategyId.ADVISORY: advisory_driven,
    StrategyId.MEAN_REVERSION: mean_reversion,
}
