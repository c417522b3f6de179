"""
Position Manager
Owns the trade lifecycle: open, TP ladder partial closes, breakeven and
trailing stop, advisory override, session hard-close and stop-loss close.

Every mutation of a Trade goes through here. Opens are validated in full
before anything is changed.
"""

import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger

from ..core.constants import (
    PERCENT_TOLERANCE,
    RISK_PER_TRADE,
    CloseReason,
    Sentiment,
    StrategyId,
    TradeType,
)
from ..core.exceptions import InvariantViolation
from ..core.models import Advisory, Instrument, TakeProfitLevel, Trade, TradeIntent, build_ladder
from ..utils.time_utils import utc_day_start

_trade_log = logger.bind(kind="TRADE")


class TradeEventKind(str, Enum):
    OPENED = "OPENED"
    TP_HIT = "TP_HIT"
    STOP_MOVED = "STOP_MOVED"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class TradeEvent:
    kind: TradeEventKind
    trade: Trade
    message: str
    realized: float = 0.0


@dataclass(frozen=True)
class PositionConfig:
    sl_pct: float = 0.005
    tp_pcts: Tuple[float, ...] = (0.006, 0.01, 0.03)
    tp_allocation: Tuple[float, ...] = (0.4, 0.4, 0.2)
    trailing_activation_pct: float = 0.005
    trailing_distance_pct: float = 0.0025
    guardian_confidence: float = 80.0
    hard_close_strategies: Tuple[str, ...] = (StrategyId.SESSION_BREAKOUT.value,)

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> "PositionConfig":
        cfg = cfg or {}
        ladder = cfg.get("tp_ladder") or []
        tp_pcts = tuple(float(level["distance_pct"]) for level in ladder) or cls.tp_pcts
        allocation = tuple(float(level["percentage"]) for level in ladder) or cls.tp_allocation
        return cls(
            sl_pct=float(cfg.get("sl_pct", 0.005)),
            tp_pcts=tp_pcts,
            tp_allocation=allocation,
            trailing_activation_pct=float(cfg.get("trailing_activation_pct", 0.005)),
            trailing_distance_pct=float(cfg.get("trailing_distance_pct", 0.0025)),
            guardian_confidence=float(cfg.get("guardian_confidence", 80)),
            hard_close_strategies=tuple(cfg.get("hard_close_strategies", cls.hard_close_strategies)),
        )


def compute_lot_size(
    balance: float,
    entry: float,
    stop: float,
    instrument: Instrument,
    risk_per_trade: float = RISK_PER_TRADE,
) -> float:
    """
    Size so that a stop-out loses `risk_per_trade` of balance, clamped to
    the instrument's lot limits and floored to its lot step. 0 when the stop
    distance is zero.
    """
    distance = abs(entry - stop)
    if distance <= 0 or balance <= 0:
        return 0.0
    raw = (balance * risk_per_trade) / (distance * instrument.value_per_point)
    step = instrument.lot_step
    stepped = math.floor(raw / step + 1e-9) * step
    size = min(max(stepped, instrument.min_lot), instrument.max_lot)
    return round(size, 8)


def _contradicts(side: TradeType, sentiment: Sentiment) -> bool:
    return (side == TradeType.BUY and sentiment == Sentiment.BEARISH) or (
        side == TradeType.SELL and sentiment == Sentiment.BULLISH
    )


class PositionManager:
    """Single writer for the trade list."""

    def __init__(
        self,
        instruments: Mapping[str, Instrument],
        config: PositionConfig = None,
        trades: Optional[List[Trade]] = None,
    ):
        self.instruments = dict(instruments)
        self.config = config or PositionConfig()
        self.trades: List[Trade] = trades if trades is not None else []

    # ── Queries ───────────────────────────────────────────────────────────────

    def open_trades(self, symbol: Optional[str] = None) -> List[Trade]:
        return [t for t in self.trades if t.is_open and (symbol is None or t.symbol == symbol)]

    def has_open_position(self, symbol: str) -> bool:
        return any(t.is_open and t.symbol == symbol for t in self.trades)

    def replace_trades(self, trades: Iterable[Trade]) -> None:
        """Swap the whole history (restore, import, reset)."""
        self.trades[:] = list(trades)

    def _pnl(self, trade: Trade, price: float, size: float) -> float:
        instrument = self.instruments.get(trade.symbol)
        value_per_point = instrument.value_per_point if instrument else 1.0
        return trade.price_pnl(price, size) * value_per_point

    # ── Open ─────────────────────────────────────────────────────────────────

    def default_stop(self, entry: float, side: TradeType) -> float:
        pct = self.config.sl_pct
        return entry * (1 - pct) if side == TradeType.BUY else entry * (1 + pct)

    def default_ladder(self, entry: float, side: TradeType) -> List[TakeProfitLevel]:
        offsets = [entry * pct for pct in self.config.tp_pcts]
        return build_ladder(entry, side == TradeType.BUY, offsets, self.config.tp_allocation)

    def _validate(self, trade: Trade) -> None:
        if self.has_open_position(trade.symbol):
            raise InvariantViolation(f"{trade.symbol} already has an open position")
        if trade.entry_price <= 0:
            raise InvariantViolation(f"Invalid entry price {trade.entry_price}")
        if trade.initial_size <= 0:
            raise InvariantViolation(f"Invalid size {trade.initial_size}")
        if not trade.tp_levels:
            raise InvariantViolation("TP ladder is empty")
        total = sum(level.percentage for level in trade.tp_levels)
        if abs(total - 1.0) > PERCENT_TOLERANCE:
            raise InvariantViolation(f"TP percentages sum to {total:.6f}, expected 1")
        if trade.is_buy and trade.stop_loss >= trade.entry_price:
            raise InvariantViolation(f"BUY stop {trade.stop_loss} not below entry {trade.entry_price}")
        if not trade.is_buy and trade.stop_loss <= trade.entry_price:
            raise InvariantViolation(f"SELL stop {trade.stop_loss} not above entry {trade.entry_price}")
        for level in trade.tp_levels:
            wrong_side = level.price <= trade.entry_price if trade.is_buy else level.price >= trade.entry_price
            if wrong_side:
                raise InvariantViolation(f"TP{level.id} {level.price} on the wrong side of entry")

    def open_position(self, intent: TradeIntent, size: float, now_ms: int) -> TradeEvent:
        """Validate and open. Raises InvariantViolation without side effects."""
        entry = intent.entry_price
        stop = intent.stop_loss if intent.stop_loss is not None else self.default_stop(entry, intent.side)
        if intent.tp_levels is not None:
            levels = [TakeProfitLevel(l.id, l.price, l.percentage) for l in intent.tp_levels]
        else:
            levels = self.default_ladder(entry, intent.side)

        trade = Trade(
            id=uuid.uuid4().hex,
            symbol=intent.symbol,
            type=intent.side,
            strategy=intent.strategy,
            entry_price=entry,
            initial_size=size,
            stop_loss=stop,
            tp_levels=levels,
            open_time=now_ms,
            entry_reason=intent.reason,
            confidence=intent.confidence,
        )
        self._validate(trade)

        self.trades.append(trade)
        msg = (
            f"OPEN {trade.type.value} {trade.symbol} @ {entry:.5f} size={size} SL={stop:.5f} "
            f"TPs={[round(l.price, 5) for l in levels]} via {trade.strategy} | {trade.entry_reason}"
        )
        _trade_log.info(msg)
        return TradeEvent(TradeEventKind.OPENED, trade, msg)

    # ── Exits ────────────────────────────────────────────────────────────────

    def _close(self, trade: Trade, price: float, now_ms: int, reason: CloseReason, outcome: str) -> TradeEvent:
        realized = self._pnl(trade, price, trade.current_size)
        trade.close(price, now_ms, reason.value, realized, outcome)
        msg = (
            f"CLOSE {trade.type.value} {trade.symbol} @ {price:.5f} reason={reason.value} "
            f"pnl={trade.pnl:+.2f} | {outcome}"
        )
        _trade_log.info(msg)
        return TradeEvent(TradeEventKind.CLOSED, trade, msg, realized)

    def _hard_close_due(self, trade: Trade, now_ms: int) -> bool:
        if trade.strategy not in self.config.hard_close_strategies:
            return False
        instrument = self.instruments.get(trade.symbol)
        if instrument is None or instrument.session is None or instrument.session.hard_close_minute is None:
            return False
        due = utc_day_start(trade.open_time) + instrument.session.hard_close_minute * 60_000
        if due <= trade.open_time:
            due += 24 * 60 * 60_000
        return now_ms >= due

    def _stop_outcome(self, trade: Trade) -> str:
        if trade.stop_loss == trade.entry_price:
            return "stopped out at breakeven"
        in_profit = trade.stop_loss > trade.entry_price if trade.is_buy else trade.stop_loss < trade.entry_price
        return "trailing stop hit" if in_profit else "stop loss hit"

    def _move_stop(self, trade: Trade, new_stop: float, label: str) -> Optional[TradeEvent]:
        """Ratchet only: a stop never moves against the position."""
        tighter = new_stop > trade.stop_loss if trade.is_buy else new_stop < trade.stop_loss
        if not tighter:
            return None
        old = trade.stop_loss
        trade.stop_loss = new_stop
        msg = f"SL {trade.symbol} {old:.5f} -> {new_stop:.5f} ({label})"
        _trade_log.info(msg)
        return TradeEvent(TradeEventKind.STOP_MOVED, trade, msg)

    def _check_ladder(self, trade: Trade, bid: float, ask: float, now_ms: int) -> List[TradeEvent]:
        events: List[TradeEvent] = []
        market = trade.exit_price(bid, ask)
        for level in trade.tp_levels:
            if level.hit:
                continue
            reached = market >= level.price if trade.is_buy else market <= level.price
            if not reached:
                continue

            closed_size = trade.initial_size * level.percentage
            realized = self._pnl(trade, level.price, closed_size)
            level.hit = True
            hit_size = sum(l.percentage for l in trade.tp_levels if l.hit) * trade.initial_size
            trade.current_size = max(trade.initial_size - hit_size, 0.0)
            trade.pnl += realized
            trade.outcome_reason = f"TP{level.id} hit @ {level.price:.5f} (+{realized:.2f})"
            msg = (
                f"TP{level.id} {trade.symbol} @ {level.price:.5f} closed {closed_size:.4f} "
                f"pnl={realized:+.2f} remaining={trade.current_size:.4f}"
            )
            _trade_log.info(msg)
            events.append(TradeEvent(TradeEventKind.TP_HIT, trade, msg, realized))

            if level is trade.tp_levels[0]:
                moved = self._move_stop(trade, trade.entry_price, "breakeven")
                if moved:
                    events.append(moved)

        if all(l.hit for l in trade.tp_levels):
            last = trade.tp_levels[-1]
            events.append(self._close(trade, last.price, now_ms, CloseReason.TAKE_PROFIT, "all TP levels hit"))
        return events

    def _trail(self, trade: Trade, bid: float, ask: float) -> Optional[TradeEvent]:
        cfg = self.config
        if trade.is_buy:
            profit = (bid - trade.entry_price) / trade.entry_price
            candidate = bid * (1 - cfg.trailing_distance_pct)
        else:
            profit = (trade.entry_price - ask) / trade.entry_price
            candidate = ask * (1 + cfg.trailing_distance_pct)
        if profit < cfg.trailing_activation_pct:
            return None
        return self._move_stop(trade, candidate, f"trailing, profit {profit:.2%}")

    def check_exits(
        self,
        symbol: str,
        bid: float,
        ask: float,
        advisory: Advisory,
        now_ms: int,
    ) -> List[TradeEvent]:
        """
        Run exit checks for every open trade on `symbol`, in order:
        advisory override, session hard-close, stop-loss, TP ladder, trailing.
        Updates floating PnL on survivors.
        """
        events: List[TradeEvent] = []
        for trade in self.open_trades(symbol):
            market = trade.exit_price(bid, ask)

            if (
                trade.strategy == StrategyId.ADVISORY.value
                and advisory.confidence > self.config.guardian_confidence
                and _contradicts(trade.type, advisory.sentiment)
            ):
                outcome = f"advisory override: {advisory.sentiment.value} {advisory.confidence:.0f}% {advisory.reason}".strip()
                events.append(self._close(trade, market, now_ms, CloseReason.ADVISORY_OVERRIDE, outcome))
                continue

            if self._hard_close_due(trade, now_ms):
                events.append(self._close(trade, market, now_ms, CloseReason.SESSION_CLOSE, "session hard close"))
                continue

            stopped = market <= trade.stop_loss if trade.is_buy else market >= trade.stop_loss
            if stopped:
                outcome = self._stop_outcome(trade)
                events.append(self._close(trade, trade.stop_loss, now_ms, CloseReason.STOP_LOSS, outcome))
                continue

            events.extend(self._check_ladder(trade, bid, ask, now_ms))
            if not trade.is_open:
                continue

            trailed = self._trail(trade, bid, ask)
            if trailed:
                events.append(trailed)

            trade.floating_pnl = self._pnl(trade, market, trade.current_size)
        return events

    def update_floating(self, symbol: str, bid: float, ask: float) -> None:
        for trade in self.open_trades(symbol):
            trade.floating_pnl = self._pnl(trade, trade.exit_price(bid, ask), trade.current_size)

    def force_close(self, prices: Mapping[str, Tuple[float, float]], now_ms: int,
                    symbol: Optional[str] = None) -> List[TradeEvent]:
        """
        Close every open trade (optionally only `symbol`) at market.
        `prices` maps symbol -> (bid, ask); trades on a symbol without a price
        stay open.
        """
        events = []
        for trade in self.open_trades(symbol):
            if trade.symbol not in prices:
                _trade_log.warning(f"No live price for {trade.symbol}, {trade.id} left open")
                continue
            bid, ask = prices[trade.symbol]
            events.append(self._close(trade, trade.exit_price(bid, ask), now_ms, CloseReason.MANUAL, "manual close"))
        return events

    def snapshot(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.trades]
