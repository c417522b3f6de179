"""
Domain records shared by every component.

Persisted records (trades, account) serialize with camelCase keys, the
format the dashboard and older state files use. Loaders accept both
camelCase and snake_case.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from .constants import (
    INITIAL_BALANCE,
    TICK_HISTORY_SIZE,
    RangeZone,
    Sentiment,
    SkipCode,
    TradeState,
    TradeType,
    TrendDirection,
)
from .exceptions import InvariantViolation


def _pick(data: Mapping[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in data and data[camel] not in (None, ""):
        return data[camel]
    if snake in data and data[snake] not in (None, ""):
        return data[snake]
    return default


def _as_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def parse_hhmm(value: Optional[str]) -> Optional[int]:
    """'13:30' -> minutes after UTC midnight."""
    if not value:
        return None
    hours, minutes = str(value).split(":")
    return int(hours) * 60 + int(minutes)


# ── Instruments ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SessionWindow:
    """UTC time-of-day window in minutes after midnight."""
    start_minute: int
    end_minute: int
    hard_close_minute: Optional[int] = None

    def contains(self, minute_of_day: int) -> bool:
        if self.start_minute <= self.end_minute:
            return self.start_minute <= minute_of_day < self.end_minute
        # Window wraps midnight
        return minute_of_day >= self.start_minute or minute_of_day < self.end_minute

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> Optional["SessionWindow"]:
        if not cfg:
            return None
        return cls(
            start_minute=parse_hhmm(cfg["start_utc"]),
            end_minute=parse_hhmm(cfg["end_utc"]),
            hard_close_minute=parse_hhmm(cfg.get("hard_close_utc")),
        )


@dataclass(frozen=True)
class Instrument:
    """Static per-symbol configuration, immutable after boot."""
    symbol: str
    start_price: float
    volatility: float = 0.001
    decimals: int = 2
    min_lot: float = 0.01
    max_lot: float = 100.0
    lot_step: float = 0.01
    spread_pct: float = 0.001
    value_per_point: float = 1.0
    default_strategies: Tuple[str, ...] = ()
    session: Optional[SessionWindow] = None
    advisory_min_confidence: float = 70.0

    @classmethod
    def from_config(cls, symbol: str, cfg: Mapping[str, Any]) -> "Instrument":
        return cls(
            symbol=symbol,
            start_price=float(cfg["start_price"]),
            volatility=float(cfg.get("volatility", 0.001)),
            decimals=int(cfg.get("decimals", 2)),
            min_lot=float(cfg.get("min_lot", 0.01)),
            max_lot=float(cfg.get("max_lot", 100.0)),
            lot_step=float(cfg.get("lot_step", 0.01)),
            spread_pct=float(cfg.get("spread_pct", 0.001)),
            value_per_point=float(cfg.get("value_per_point", 1.0)),
            default_strategies=tuple(s.upper() for s in cfg.get("strategies", [])),
            session=SessionWindow.from_config(cfg.get("session")),
            advisory_min_confidence=float(cfg.get("advisory_min_confidence", 70.0)),
        )

    def round_price(self, price: float) -> float:
        return round(price, self.decimals)


# ── Market data ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Tick:
    """Normalized price update."""
    symbol: str
    bid: float
    ask: float
    mid: float
    timestamp: int

    @classmethod
    def normalize(
        cls,
        symbol: str,
        timestamp: int,
        bid: Optional[float] = None,
        ask: Optional[float] = None,
        price: Optional[float] = None,
        spread_pct: float = 0.0,
    ) -> "Tick":
        """
        Build a tick from whatever the upstream provided.

        At least one of bid/ask/price is required. A lone trade price is the
        mid; missing sides are derived from the mid with the instrument spread.
        """
        if bid is None and ask is None and price is None:
            raise ValueError(f"Tick for {symbol} carries no price")

        if bid is not None and ask is not None:
            mid = (bid + ask) / 2
        elif price is not None:
            mid = price
        else:
            mid = bid if bid is not None else ask

        if bid is None:
            bid = mid * (1 - spread_pct)
        if ask is None:
            ask = mid * (1 + spread_pct)
        return cls(symbol=symbol, bid=float(bid), ask=float(ask), mid=float(mid), timestamp=int(timestamp))


@dataclass
class Candle:
    """OHLC aggregate; mutated in place while open, immutable once closed."""
    open: float
    high: float
    low: float
    close: float
    time: int
    is_closed: bool = False
    volume: int = 1

    def update(self, price: float) -> None:
        self.high = max(self.high, price)
        self.low = min(self.low, price)
        self.close = price
        self.volume += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "time": self.time,
            "isClosed": self.is_closed,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class StructureZone:
    """A detected fair-value gap or order block."""
    kind: str
    bullish: bool
    top: float
    bottom: float

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "bullish": self.bullish, "top": self.top, "bottom": self.bottom}


@dataclass
class MarketStructure:
    """Range position and smart-money detections from a candle window."""
    range_position: float = 0.5
    zone: RangeZone = RangeZone.EQUILIBRIUM
    range_high: Optional[float] = None
    range_low: Optional[float] = None
    fvg: Optional[StructureZone] = None
    order_block: Optional[StructureZone] = None
    prev_high: Optional[float] = None
    prev_low: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rangePosition": round(self.range_position, 4),
            "zone": self.zone.value,
            "rangeHigh": self.range_high,
            "rangeLow": self.range_low,
            "fvg": self.fvg.to_dict() if self.fvg else None,
            "orderBlock": self.order_block.to_dict() if self.order_block else None,
            "prevHigh": self.prev_high,
            "prevLow": self.prev_low,
        }


@dataclass(frozen=True)
class Advisory:
    """Normalized opinion from the advisory collaborator."""
    sentiment: Sentiment = Sentiment.NEUTRAL
    confidence: float = 0.0
    reason: str = ""
    updated_at: int = 0

    @classmethod
    def no_opinion(cls, reason: str = "", updated_at: int = 0) -> "Advisory":
        return cls(Sentiment.NEUTRAL, 0.0, reason, updated_at)

    def is_fresh(self, now_ms: int, max_age_ms: int) -> bool:
        return self.updated_at > 0 and now_ms - self.updated_at <= max_age_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class SkipReason:
    """Why the last evaluation produced no trade."""
    code: SkipCode
    message: str
    strategy: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "strategy": self.strategy,
            "context": dict(self.context),
        }


@dataclass
class AssetState:
    """Per-instrument derived snapshot, mutated on every tick and candle close."""
    symbol: str
    current_price: float
    bid: float = 0.0
    ask: float = 0.0
    last_tick_ms: int = 0
    ema20: float = 0.0
    ema200: float = 0.0
    htf_ema200: float = 0.0
    trend: TrendDirection = TrendDirection.UP
    htf_trend: TrendDirection = TrendDirection.UP
    rsi: float = 50.0
    slope: float = 0.0
    bollinger: Dict[str, float] = field(default_factory=lambda: {"upper": 0.0, "middle": 0.0, "lower": 0.0})
    adx: float = 0.0
    vwap: float = 0.0
    sma50: float = 0.0
    structure: MarketStructure = field(default_factory=MarketStructure)
    bot_active: bool = True
    strategies: List[str] = field(default_factory=list)
    advisory: Advisory = field(default_factory=Advisory)
    last_skip_reason: Optional[SkipReason] = None
    is_live: bool = False
    history: Deque[float] = field(default_factory=lambda: deque(maxlen=TICK_HISTORY_SIZE))

    @classmethod
    def create(cls, instrument: Instrument) -> "AssetState":
        price = instrument.start_price
        return cls(
            symbol=instrument.symbol,
            current_price=price,
            bid=price,
            ask=price,
            ema20=price,
            ema200=price,
            htf_ema200=price,
            bollinger={"upper": price, "middle": price, "lower": price},
            vwap=price,
            sma50=price,
            strategies=list(instrument.default_strategies),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "currentPrice": self.current_price,
            "bid": self.bid,
            "ask": self.ask,
            "lastTick": self.last_tick_ms,
            "ema": self.ema20,
            "ema200": self.ema200,
            "htfEma200": self.htf_ema200,
            "trend": self.trend.value,
            "htfTrend": self.htf_trend.value,
            "rsi": self.rsi,
            "slope": self.slope,
            "bollinger": dict(self.bollinger),
            "adx": self.adx,
            "vwap": self.vwap,
            "sma50": self.sma50,
            "structure": self.structure.to_dict(),
            "botActive": self.bot_active,
            "strategies": list(self.strategies),
            "advisory": self.advisory.to_dict(),
            "lastSkipReason": self.last_skip_reason.to_dict() if self.last_skip_reason else None,
            "isLive": self.is_live,
            "history": list(self.history)[-100:],
        }


# ── Trades ────────────────────────────────────────────────────────────────────

@dataclass
class TakeProfitLevel:
    """One rung of a take-profit ladder. `hit` never resets."""
    id: int
    price: float
    percentage: float
    hit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "price": self.price, "percentage": self.percentage, "hit": self.hit}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TakeProfitLevel":
        return cls(
            id=int(data.get("id", 0)),
            price=float(data["price"]),
            percentage=float(data["percentage"]),
            hit=bool(data.get("hit", False)),
        )


@dataclass(frozen=True)
class SettledTakeProfitLevel:
    """Read-only rung of a closed trade's ladder."""
    id: int
    price: float
    percentage: float
    hit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "price": self.price, "percentage": self.percentage, "hit": self.hit}


def _settle_ladder(levels: Sequence[Any]) -> Tuple[SettledTakeProfitLevel, ...]:
    return tuple(SettledTakeProfitLevel(l.id, l.price, l.percentage, l.hit) for l in levels)


# Fields a closed trade may still change (display only)
_DISPLAY_FIELDS = frozenset({"floating_pnl"})

# Older state files stored a fixed three-rung ladder as flat fields
_LEGACY_LADDER = (("tp1", "tp1Hit", 0.4), ("tp2", "tp2Hit", 0.4), ("tp3", "tp3Hit", 0.2))


@dataclass
class Trade:
    """
    A simulated position.

    Invariants: current_size = initial_size - sum(hit level sizes); once
    CLOSED, only display-derived fields may change and the ladder is a tuple
    of read-only levels.
    """
    symbol: str
    type: TradeType
    entry_price: float
    initial_size: float
    stop_loss: float
    open_time: int
    strategy: str = "MANUAL"
    id: Optional[str] = None
    current_size: Optional[float] = None
    tp_levels: List[TakeProfitLevel] = field(default_factory=list)
    status: TradeState = TradeState.OPEN
    close_time: Optional[int] = None
    close_price: Optional[float] = None
    close_reason: Optional[str] = None
    pnl: float = 0.0
    floating_pnl: float = 0.0
    entry_reason: str = ""
    outcome_reason: str = ""
    confidence: float = 0.0

    def __post_init__(self):
        if self.current_size is None:
            self.current_size = self.initial_size
        if self.status == TradeState.CLOSED:
            object.__setattr__(self, "tp_levels", _settle_ladder(self.tp_levels))
        object.__setattr__(self, "_sealed", self.status == TradeState.CLOSED)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_sealed", False) and name not in _DISPLAY_FIELDS:
            raise InvariantViolation(f"Trade {self.id or self.symbol} is closed; cannot change '{name}'")
        object.__setattr__(self, name, value)

    @property
    def is_buy(self) -> bool:
        return self.type == TradeType.BUY

    @property
    def is_open(self) -> bool:
        return self.status == TradeState.OPEN

    def exit_price(self, bid: float, ask: float) -> float:
        """Market price this trade would close at: bid for buys, ask for sells."""
        return bid if self.is_buy else ask

    def price_pnl(self, price: float, size: float) -> float:
        move = price - self.entry_price if self.is_buy else self.entry_price - price
        return move * size

    def close(self, price: float, close_time: int, reason: str, realized: float, outcome: str) -> None:
        """Terminal transition. Seals the record against further mutation."""
        if not self.is_open:
            raise InvariantViolation(f"Trade {self.id} already closed")
        self.pnl += realized
        self.close_price = price
        self.close_time = close_time
        self.close_reason = reason
        self.outcome_reason = outcome
        self.status = TradeState.CLOSED
        self.floating_pnl = 0.0
        self.tp_levels = _settle_ladder(self.tp_levels)
        object.__setattr__(self, "_sealed", True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "type": self.type.value,
            "strategy": self.strategy,
            "entryPrice": self.entry_price,
            "initialSize": self.initial_size,
            "currentSize": self.current_size,
            "stopLoss": self.stop_loss,
            "tpLevels": [level.to_dict() for level in self.tp_levels],
            "openTime": self.open_time,
            "status": self.status.value,
            "closeTime": self.close_time,
            "closePrice": self.close_price,
            "closeReason": self.close_reason,
            "pnl": self.pnl,
            "floatingPnl": self.floating_pnl,
            "entryReason": self.entry_reason,
            "outcomeReason": self.outcome_reason,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Trade":
        levels_raw = _pick(data, "tpLevels", "tp_levels")
        if levels_raw:
            levels = [TakeProfitLevel.from_dict(level) for level in levels_raw]
        else:
            levels = [
                TakeProfitLevel(i + 1, float(data[price_key]), pct, bool(data.get(hit_key, False)))
                for i, (price_key, hit_key, pct) in enumerate(_LEGACY_LADDER)
                if _as_float(data.get(price_key)) is not None
            ]

        initial = _as_float(_pick(data, "initialSize", "initial_size"), 0.0)
        return cls(
            id=_pick(data, "id", "id") or None,
            symbol=str(data["symbol"]),
            type=TradeType(str(data["type"]).upper()),
            strategy=str(_pick(data, "strategy", "strategy", "MANUAL")),
            entry_price=_as_float(_pick(data, "entryPrice", "entry_price"), 0.0),
            initial_size=initial,
            current_size=_as_float(_pick(data, "currentSize", "current_size"), initial),
            stop_loss=_as_float(_pick(data, "stopLoss", "stop_loss"), 0.0),
            tp_levels=levels,
            open_time=_as_int(_pick(data, "openTime", "open_time"), 0),
            status=TradeState(str(_pick(data, "status", "status", "OPEN")).upper()),
            close_time=_as_int(_pick(data, "closeTime", "close_time")),
            close_price=_as_float(_pick(data, "closePrice", "close_price")),
            close_reason=_pick(data, "closeReason", "close_reason"),
            pnl=_as_float(data.get("pnl"), 0.0),
            floating_pnl=_as_float(_pick(data, "floatingPnl", "floating_pnl"), 0.0),
            entry_reason=str(_pick(data, "entryReason", "entry_reason", "")),
            outcome_reason=str(_pick(data, "outcomeReason", "outcome_reason", "")),
            confidence=_as_float(data.get("confidence"), 0.0),
        )


@dataclass
class Account:
    """Derived account figures; always recomputed, never hand-adjusted."""
    balance: float = INITIAL_BALANCE
    equity: float = INITIAL_BALANCE
    day_pnl: float = 0.0
    total_pnl: float = 0.0
    win_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": round(self.balance, 2),
            "equity": round(self.equity, 2),
            "dayPnL": round(self.day_pnl, 2),
            "totalPnL": round(self.total_pnl, 2),
            "winRate": round(self.win_rate, 2),
        }


def build_ladder(
    entry: float,
    is_buy: bool,
    offsets: Sequence[float],
    percentages: Sequence[float] = (0.4, 0.4, 0.2),
) -> List[TakeProfitLevel]:
    """Ordered TP ladder at absolute price offsets from entry."""
    sign = 1 if is_buy else -1
    return [
        TakeProfitLevel(id=i + 1, price=entry + sign * offset, percentage=pct)
        for i, (offset, pct) in enumerate(zip(offsets, percentages))
    ]


@dataclass(frozen=True)
class TradeIntent:
    """
    A strategy's request to open a position.

    stop_loss / tp_levels of None mean "use the configured defaults".
    """
    symbol: str
    side: TradeType
    entry_price: float
    strategy: str
    reason: str
    confidence: float = 0.0
    stop_loss: Optional[float] = None
    tp_levels: Optional[Tuple[TakeProfitLevel, ...]] = None
