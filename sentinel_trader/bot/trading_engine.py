"""
Trading engine: the single owner of all mutable trading state.

Ticks are handled one at a time from a queue, so asset and trade mutation
needs no locks. Per tick: update price indicators, fold candles (refreshing
candle indicators and requesting advisory on close), run exit checks, run
entry evaluation, recompute the account, persist on change and publish a
fresh snapshot for readers.
"""
import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from loguru import logger

from ..advisory import AdvisoryCache, create_provider
from ..analysis import recompute
from ..core.candle_aggregator import CandleAggregator, CandleClose
from ..core.constants import (
    CANDLE_RING_SIZE,
    INITIAL_BALANCE,
    ONE_MINUTE_MS,
    RISK_PER_TRADE,
    SkipCode,
    StrategyId,
    Timeframe,
    TradeState,
    TrendDirection,
)
from ..core.exceptions import InvariantViolation, SnapshotCorruptError
from ..core.models import Account, AssetState, Instrument, SkipReason, Tick, TradeIntent
from ..indicators import (
    adx,
    analyze_structure,
    bollinger,
    candles_to_frame,
    ema,
    ema_step,
    linear_regression_slope,
    rsi,
    sma,
    vwap,
)
from ..notifications import LogNotifier, Notifier, add_subscription
from ..persistence import CloudSync, Snapshot, StateStore, create_cloud_sync, merge_trades, parse_trades, parse_trades_csv
from ..position_management import PositionConfig, PositionManager, TradeEvent, TradeEventKind, compute_lot_size
from ..strategy import GuardConfig, StrategyConfig, StrategyEvaluator
from ..utils.config_loader import lookup
from ..utils.time_utils import now_ms

_market_log = logger.bind(kind="MARKET")

_STRATEGY_IDS = {sid.value for sid in StrategyId}


def load_instruments(cfg: Mapping[str, Any]) -> Dict[str, Instrument]:
    return {symbol: Instrument.from_config(symbol, icfg) for symbol, icfg in (cfg.get("instruments") or {}).items()}


class TradingEngine:

    def __init__(
        self,
        instruments: Mapping[str, Instrument],
        advisory: AdvisoryCache,
        store: StateStore,
        cloud: Optional[CloudSync] = None,
        notifier: Optional[Notifier] = None,
        position_config: Optional[PositionConfig] = None,
        strategy_config: Optional[StrategyConfig] = None,
        guard_config: Optional[GuardConfig] = None,
        initial_balance: float = INITIAL_BALANCE,
        risk_per_trade: float = RISK_PER_TRADE,
        ring_size: int = CANDLE_RING_SIZE,
        clock: Callable[[], int] = now_ms,
    ):
        self.instruments = dict(instruments)
        self.advisory = advisory
        self.store = store
        self.cloud = cloud or CloudSync(None)
        self.initial_balance = initial_balance
        self.risk_per_trade = risk_per_trade
        self._clock = clock

        self.assets: Dict[str, AssetState] = {s: AssetState.create(i) for s, i in self.instruments.items()}
        self.candles = CandleAggregator((Timeframe.M5, Timeframe.M15), ring_size)
        self.positions = PositionManager(self.instruments, position_config)
        self.evaluator = StrategyEvaluator(strategy_config, guard_config)
        self.account = Account(balance=initial_balance, equity=initial_balance)
        self.push_subscriptions: List[Dict[str, Any]] = []
        self.notifier = notifier or LogNotifier(self.push_subscriptions)
        self.notifier.subscriptions = self.push_subscriptions

        self.queue: "asyncio.Queue[Tick]" = asyncio.Queue()
        self.published: Dict[str, Any] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "TradingEngine":
        instruments = load_instruments(cfg)
        advisory = AdvisoryCache(
            create_provider(cfg),
            min_interval_ms=int(lookup(cfg, "advisory.min_interval_minutes", 5)) * ONE_MINUTE_MS,
            max_age_ms=int(lookup(cfg, "advisory.max_age_minutes", 30)) * ONE_MINUTE_MS,
        )
        store = StateStore(
            lookup(cfg, "paths.state_file", "data/state.json"),
            lookup(cfg, "paths.archive_dir", "data/archive"),
        )
        return cls(
            instruments=instruments,
            advisory=advisory,
            store=store,
            cloud=create_cloud_sync(cfg),
            position_config=PositionConfig.from_config(cfg.get("positions")),
            strategy_config=StrategyConfig.from_config(cfg.get("strategies")),
            guard_config=GuardConfig.from_config(cfg.get("guard")),
            initial_balance=float(lookup(cfg, "account.initial_balance", INITIAL_BALANCE)),
            risk_per_trade=float(lookup(cfg, "account.risk_per_trade", RISK_PER_TRADE)),
            ring_size=int(lookup(cfg, "candles.ring_size", CANDLE_RING_SIZE)),
        )

    @property
    def trades(self):
        return self.positions.trades

    # ── Snapshots ─────────────────────────────────────────────────────────────

    def assets_config(self) -> Dict[str, Dict[str, Any]]:
        return {s: {"botActive": a.bot_active, "strategies": list(a.strategies)} for s, a in self.assets.items()}

    def build_snapshot(self, now: int) -> Snapshot:
        return Snapshot(
            account=self.account,
            trades=list(self.trades),
            push_subscriptions=list(self.push_subscriptions),
            assets_config=self.assets_config(),
            saved_at=now,
        )

    def _publish(self, now: int) -> None:
        """Replace the published state; readers never see a half-applied mutation."""
        self.published = {
            "account": self.account.to_dict(),
            "trades": [t.to_dict() for t in self.trades],
            "assetsConfig": self.assets_config(),
            "assets": {s: a.to_dict() for s, a in self.assets.items()},
            "timestamp": now,
        }

    def query_state(self) -> Dict[str, Any]:
        """Last published snapshot. Read-only."""
        return self.published

    def _recompute(self, now: int) -> None:
        self.account = recompute(self.trades, now, self.initial_balance)

    def _persist(self, now: int) -> None:
        snapshot = self.build_snapshot(now).to_dict()
        try:
            self.store.save(snapshot)
        except OSError as e:
            logger.error(f"Local state save failed: {e}")
        self.cloud.push(snapshot)

    def _commit(self, now: int) -> None:
        self._recompute(now)
        self._persist(now)
        self._publish(now)

    # ── Boot ──────────────────────────────────────────────────────────────────

    def _apply_assets_config(self, assets_config: Mapping[str, Any]) -> None:
        for symbol, conf in assets_config.items():
            asset = self.assets.get(symbol)
            if asset is None or not isinstance(conf, Mapping):
                continue
            asset.bot_active = bool(conf.get("botActive", asset.bot_active))
            if isinstance(conf.get("strategies"), list):
                asset.strategies = [s for s in conf["strategies"] if s in _STRATEGY_IDS]

    def restore(self) -> None:
        """Load local state, reconcile with the cloud copy and persist if they differed."""
        now = self._clock()
        local_raw = self.store.load()
        local = Snapshot.from_dict(local_raw) if local_raw else Snapshot()

        trades = local.trades
        cloud = self._pull_cloud()
        changed = False
        if cloud is not None:
            merged = merge_trades(trades, cloud.trades)
            changed = merged != trades
            logger.info(f"Cloud reconcile: local={len(trades)} cloud={len(cloud.trades)} merged={len(merged)}")
            trades = merged

        self.positions.replace_trades(trades)
        self.push_subscriptions[:] = local.push_subscriptions
        self._apply_assets_config(local.assets_config)
        self._recompute(now)
        if changed or local_raw is None:
            self._persist(now)
        self._publish(now)
        logger.info(
            f"State restored | trades={len(self.trades)} open={len(self.positions.open_trades())} "
            f"balance={self.account.balance:.2f}"
        )

    def _pull_cloud(self) -> Optional[Snapshot]:
        raw = self.cloud.pull()
        if not raw:
            return None
        try:
            return Snapshot.from_dict(raw)
        except (SnapshotCorruptError, AttributeError, TypeError, ValueError) as e:
            logger.error(f"Cloud snapshot unusable, keeping local state: {e}")
            return None

    # ── Tick path ─────────────────────────────────────────────────────────────

    def submit_tick(self, tick: Tick) -> None:
        """Feed callback: enqueue for serialized handling."""
        self.queue.put_nowait(tick)

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        logger.info("Engine loop started")
        while True:
            tick = await self.queue.get()
            try:
                self.handle_tick(tick)
            except Exception as e:
                logger.exception(f"Tick handling failed for {tick.symbol}: {e}")

    def _update_price(self, asset: AssetState, tick: Tick) -> None:
        price = tick.mid
        asset.current_price = price
        asset.bid = tick.bid
        asset.ask = tick.ask
        asset.last_tick_ms = tick.timestamp
        asset.is_live = True
        asset.history.append(price)
        asset.ema20 = ema_step(asset.ema20, price, 20)
        asset.ema200 = ema_step(asset.ema200, price, 200)
        asset.slope = linear_regression_slope(asset.history, 10)
        asset.trend = TrendDirection.UP if price > asset.ema200 else TrendDirection.DOWN

    def _on_candle_close(self, asset: AssetState, event: CandleClose) -> None:
        symbol = asset.symbol
        m15 = candles_to_frame(self.candles.candles(symbol, Timeframe.M15, closed_only=True))
        if event.timeframe == Timeframe.M15:
            if len(m15):
                asset.htf_ema200 = ema(m15["close"], 200)
                asset.htf_trend = TrendDirection.UP if asset.current_price > asset.htf_ema200 else TrendDirection.DOWN
            return

        m5 = candles_to_frame(self.candles.candles(symbol, Timeframe.M5, closed_only=True))
        asset.rsi = rsi(m5)
        asset.bollinger = bollinger(m5)
        asset.adx = adx(m5)
        asset.vwap = vwap(m5)
        asset.sma50 = sma(m5["close"], 50)
        asset.structure = analyze_structure(m5, m15, asset.current_price)
        _market_log.debug(
            f"{symbol} M5 indicators | RSI={asset.rsi:.1f} ADX={asset.adx:.1f} "
            f"range={asset.structure.range_position:.2f} {asset.structure.zone.value}"
        )
        self._request_advisory(asset)

    def _request_advisory(self, asset: AssetState) -> None:
        """Schedule a refresh without waiting; results land in the cache."""
        wants = StrategyId.ADVISORY.value in asset.strategies or any(
            t.strategy == StrategyId.ADVISORY.value for t in self.positions.open_trades(asset.symbol)
        )
        if not wants or self._loop is None or not self.advisory.should_refresh(asset.symbol):
            return
        task = self._loop.create_task(self.advisory.refresh(asset.symbol, asset.to_dict()))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _set_skip(self, asset: AssetState, skip: Optional[SkipReason]) -> None:
        previous = asset.last_skip_reason
        asset.last_skip_reason = skip
        if skip is not None and (previous is None or previous.code != skip.code):
            _market_log.debug(f"{asset.symbol} skip [{skip.code.value}] {skip.message}")

    def _open(self, instrument: Instrument, asset: AssetState, intent: TradeIntent, now: int) -> Optional[TradeEvent]:
        stop = intent.stop_loss if intent.stop_loss is not None else self.positions.default_stop(intent.entry_price, intent.side)
        size = compute_lot_size(self.account.balance, intent.entry_price, stop, instrument, self.risk_per_trade)
        if size <= 0:
            self._set_skip(asset, SkipReason(SkipCode.REJECTED, "Position size is zero", strategy=intent.strategy))
            return None
        try:
            event = self.positions.open_position(intent, size, now)
        except InvariantViolation as e:
            logger.warning(f"Open rejected for {instrument.symbol}: {e}")
            self._set_skip(asset, SkipReason(SkipCode.REJECTED, str(e), strategy=intent.strategy))
            return None
        self._set_skip(asset, None)
        return event

    def _notify(self, events: List[TradeEvent]) -> None:
        for event in events:
            if event.kind == TradeEventKind.STOP_MOVED:
                continue
            t = event.trade
            self.notifier.notify(f"{t.symbol} {t.type.value} {event.kind.value}", event.message)

    def handle_tick(self, tick: Tick) -> None:
        instrument = self.instruments.get(tick.symbol)
        if instrument is None:
            return
        asset = self.assets[tick.symbol]
        now = tick.timestamp

        self._update_price(asset, tick)
        for event in self.candles.on_tick(tick):
            self._on_candle_close(asset, event)

        advisory = self.advisory.get(tick.symbol, now)
        asset.advisory = advisory

        events = self.positions.check_exits(tick.symbol, tick.bid, tick.ask, advisory, now)

        evaluation = self.evaluator.evaluate(
            instrument,
            asset,
            self.trades,
            self.candles.candles(tick.symbol, Timeframe.M5),
            advisory,
            now,
        )
        if evaluation.intent is not None:
            opened = self._open(instrument, asset, evaluation.intent, now)
            if opened:
                events.append(opened)
        else:
            self._set_skip(asset, evaluation.skip)

        self._recompute(now)
        if events:
            self._persist(now)
            self._notify(events)
        self._publish(now)

    # ── Control operations ────────────────────────────────────────────────────

    def toggle_bot(self, symbol: str) -> bool:
        asset = self.assets.get(symbol)
        if asset is None:
            return False
        asset.bot_active = not asset.bot_active
        logger.info(f"{symbol} bot {'enabled' if asset.bot_active else 'disabled'}")
        self._commit(self._clock())
        return True

    def toggle_strategy(self, symbol: str, strategy: str) -> bool:
        asset = self.assets.get(symbol)
        strategy = str(strategy or "").upper()
        if asset is None or strategy not in _STRATEGY_IDS:
            return False
        if strategy in asset.strategies:
            asset.strategies.remove(strategy)
        else:
            asset.strategies.append(strategy)
        logger.info(f"{symbol} strategies -> {asset.strategies}")
        self._commit(self._clock())
        return True

    def force_close(self, symbol: Optional[str] = None) -> bool:
        if symbol is not None and symbol not in self.assets:
            return False
        now = self._clock()
        prices = {s: (a.bid, a.ask) for s, a in self.assets.items() if a.is_live}
        events = self.positions.force_close(prices, now, symbol)
        self._commit(now)
        self._notify(events)
        return True

    def reset_account(self) -> bool:
        """Archive the current state, clear all trades and reset the balance."""
        now = self._clock()
        try:
            self.store.archive(self.build_snapshot(now).to_dict(), now)
        except OSError as e:
            logger.error(f"Archive before reset failed, reset aborted: {e}")
            return False
        self.positions.replace_trades([])
        for symbol in self.assets:
            self.advisory.invalidate(symbol)
        self._commit(now)
        logger.warning("Account reset")
        return True

    def import_trades(self, records: List[Mapping[str, Any]]) -> bool:
        if not isinstance(records, list):
            return False
        return self._merge_in(parse_trades(records), "import")

    def import_csv(self, text: str) -> bool:
        if not isinstance(text, str):
            return False
        return self._merge_in(parse_trades_csv(text), "CSV import")

    def _merge_in(self, incoming, label: str) -> bool:
        if not incoming:
            logger.warning(f"{label}: no readable trades")
            return False
        merged = merge_trades(self.trades, incoming)
        open_symbols = [t.symbol for t in merged if t.status == TradeState.OPEN]
        doubled = sorted({s for s in open_symbols if open_symbols.count(s) > 1})
        if doubled:
            logger.warning(f"{label} rejected: would leave more than one open position on {', '.join(doubled)}")
            return False
        before = len(self.trades)
        self.positions.replace_trades(merged)
        logger.info(f"{label}: {len(incoming)} records, {len(self.trades) - before} new trades")
        self._commit(self._clock())
        return True

    def add_push_subscription(self, subscription: Mapping[str, Any]) -> bool:
        if not isinstance(subscription, Mapping):
            return False
        if not add_subscription(self.push_subscriptions, subscription):
            return False
        self._commit(self._clock())
        return True

    def handle_control(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        """Dispatch a client control message to the operation it names."""
        action = message.get("action")
        if action == "state":
            return {"ok": True, "action": action, "data": self.query_state()}

        handlers = {
            "toggle_bot": lambda: self.toggle_bot(message.get("symbol")),
            "toggle_strategy": lambda: self.toggle_strategy(message.get("symbol"), message.get("strategy")),
            "force_close": lambda: self.force_close(message.get("symbol")),
            "reset": self.reset_account,
            "import_trades": lambda: self.import_trades(message.get("trades")),
            "import_csv": lambda: self.import_csv(message.get("csv")),
            "subscribe_push": lambda: self.add_push_subscription(message.get("subscription")),
        }
        handler = handlers.get(action)
        if handler is None:
            return {"ok": False, "action": action, "error": "unknown action"}
        return {"ok": bool(handler()), "action": action}
