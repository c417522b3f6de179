"""
Strategy evaluator.

Runs the enabled strategies for one instrument in fixed order. Entry is only
considered when the bot is active, no position is open for the instrument
and the guard allows it. The first strategy that produces an intent wins.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..core.constants import EVALUATION_ORDER, SkipCode
from ..core.models import Advisory, AssetState, Candle, Instrument, SkipReason, Trade, TradeIntent
from .guard_engine import GuardConfig, GuardState, evaluate_guard
from .strategies import STRATEGIES, StrategyConfig, StrategyContext


@dataclass(frozen=True)
class Evaluation:
    """Outcome of one evaluation tick: an intent, or the reason there is none."""
    intent: Optional[TradeIntent] = None
    skip: Optional[SkipReason] = None
    guard: Optional[GuardState] = None


class StrategyEvaluator:
    """Stateless apart from its configuration."""

    def __init__(self, strategy_config: StrategyConfig = None, guard_config: GuardConfig = None):
        self.strategy_config = strategy_config or StrategyConfig()
        self.guard_config = guard_config or GuardConfig()

    def evaluate(
        self,
        instrument: Instrument,
        asset: AssetState,
        trades: Iterable[Trade],
        candles: List[Candle],
        advisory: Advisory,
        now_ms: int,
    ) -> Evaluation:
        symbol = instrument.symbol
        trades = list(trades)

        if not asset.bot_active:
            return Evaluation(skip=SkipReason(SkipCode.BOT_INACTIVE, f"Bot inactive for {symbol}"))

        enabled = [sid for sid in EVALUATION_ORDER if sid.value in asset.strategies]
        if not enabled:
            return Evaluation(skip=SkipReason(SkipCode.NO_STRATEGIES, f"No strategies enabled for {symbol}"))

        if any(t.symbol == symbol and t.is_open for t in trades):
            return Evaluation(skip=SkipReason(SkipCode.POSITION_OPEN, f"{symbol} already has an open position"))

        guard = evaluate_guard(symbol, trades, now_ms, self.guard_config)
        blocked = guard.blocked()
        if blocked:
            return Evaluation(skip=blocked, guard=guard)

        closed = sum(1 for c in candles if c.is_closed)
        if closed < self.strategy_config.warmup_candles:
            return Evaluation(
                skip=SkipReason(
                    SkipCode.WARMUP,
                    f"Warming up ({closed}/{self.strategy_config.warmup_candles} closed candles)",
                    context={"closedCandles": closed},
                ),
                guard=guard,
            )

        ctx = StrategyContext(
            instrument=instrument,
            asset=asset,
            guard=guard,
            candles=candles,
            advisory=advisory,
            now_ms=now_ms,
            config=self.strategy_config,
        )

        first_skip: Optional[SkipReason] = None
        for sid in enabled:
            signal = STRATEGIES[sid](ctx)
            if isinstance(signal, TradeIntent):
                return Evaluation(intent=signal, guard=guard)
            if first_skip is None:
                first_skip = signal
        return Evaluation(skip=first_skip, guard=guard)
