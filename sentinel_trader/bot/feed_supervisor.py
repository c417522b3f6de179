"""
Live feed supervisor.

Keeps one upstream tick stream alive: IDLE -> CONNECTING -> STREAMING, and
DEGRADED after a failure while it waits out the backoff. Silence beyond the
timeout counts as a failure. After repeated failures on one source it fails
over to the next. Ticks from a superseded connection are discarded by epoch.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional

import numpy as np
import websockets
from loguru import logger

from ..core.constants import FeedState
from ..core.models import Instrument, Tick
from ..utils.config_loader import lookup
from ..utils.time_utils import now_ms

# upstream symbol -> {"symbol": engine symbol, "scale": price multiplier}
SymbolMap = Mapping[str, Mapping[str, Any]]


# ── Upstream message normalizers ─────────────────────────────────────────────

def _mapped(symbol_map: SymbolMap, upstream: Optional[str]):
    if not upstream:
        return None, 1.0
    entry = symbol_map.get(upstream) or symbol_map.get(upstream.upper()) or symbol_map.get(upstream.lower())
    if not entry:
        return None, 1.0
    return entry["symbol"], float(entry.get("scale", 1.0))


def _float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    return float(value)


def parse_binance_message(
    msg: Mapping[str, Any],
    symbol_map: SymbolMap,
    spreads: Mapping[str, float],
    received_ms: int,
) -> Optional[Tick]:
    """Binance bookTicker ({s, b, a}) or kline ({s, k: {c}}), raw or combined-stream wrapped."""
    if "data" in msg and isinstance(msg["data"], Mapping):
        msg = msg["data"]
    symbol, scale = _mapped(symbol_map, msg.get("s"))
    if symbol is None:
        return None

    bid, ask, price = _float(msg.get("b")), _float(msg.get("a")), None
    if isinstance(msg.get("k"), Mapping):
        price = _float(msg["k"].get("c"))
    if bid is None and ask is None and price is None:
        return None
    return Tick.normalize(
        symbol,
        received_ms,
        bid=bid * scale if bid is not None else None,
        ask=ask * scale if ask is not None else None,
        price=price * scale if price is not None else None,
        spread_pct=spreads.get(symbol, 0.0),
    )


def parse_coinbase_message(
    msg: Mapping[str, Any],
    symbol_map: SymbolMap,
    spreads: Mapping[str, float],
    received_ms: int,
) -> Optional[Tick]:
    """Coinbase Exchange `ticker` channel message."""
    if msg.get("type") != "ticker":
        return None
    symbol, scale = _mapped(symbol_map, msg.get("product_id"))
    if symbol is None:
        return None
    bid, ask, price = _float(msg.get("best_bid")), _float(msg.get("best_ask")), _float(msg.get("price"))
    if bid is None and ask is None and price is None:
        return None
    return Tick.normalize(
        symbol,
        received_ms,
        bid=bid * scale if bid is not None else None,
        ask=ask * scale if ask is not None else None,
        price=price * scale if price is not None else None,
        spread_pct=spreads.get(symbol, 0.0),
    )


PARSERS = {
    "binance": parse_binance_message,
    "coinbase": parse_coinbase_message,
}


# ── Sources ──────────────────────────────────────────────────────────────────

class FeedSource(ABC):
    """Async stream of normalized ticks. One call to stream() is one connection."""

    name: str = "source"

    @abstractmethod
    def stream(self) -> AsyncIterator[Tick]:
        ...


class WebSocketFeedSource(FeedSource):

    def __init__(
        self,
        name: str,
        url: str,
        parser: Callable[..., Optional[Tick]],
        symbol_map: SymbolMap,
        spreads: Mapping[str, float],
        subscribe: Optional[Mapping[str, Any]] = None,
    ):
        self.name = name
        self.url = url
        self.parser = parser
        self.symbol_map = symbol_map
        self.spreads = spreads
        self.subscribe = subscribe

    async def stream(self) -> AsyncIterator[Tick]:
        async with websockets.connect(self.url, close_timeout=5) as ws:
            logger.info(f"Feed [{self.name}] connected: {self.url}")
            if self.subscribe:
                await ws.send(json.dumps(self.subscribe))
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    logger.debug(f"Feed [{self.name}] non-JSON frame ignored")
                    continue
                if not isinstance(msg, Mapping):
                    continue
                try:
                    tick = self.parser(msg, self.symbol_map, self.spreads, now_ms())
                except (TypeError, ValueError) as e:
                    logger.debug(f"Feed [{self.name}] bad message ignored: {e}")
                    continue
                if tick is not None:
                    yield tick


class SimulatedFeedSource(FeedSource):
    """Random walk around each instrument's start price, for offline runs."""

    def __init__(self, instruments: Mapping[str, Instrument], interval: float = 1.0, seed: Optional[int] = None):
        self.name = "simulated"
        self.instruments = dict(instruments)
        self.interval = interval
        self._rng = np.random.default_rng(seed)
        self._prices = {s: i.start_price for s, i in self.instruments.items()}

    async def stream(self) -> AsyncIterator[Tick]:
        while True:
            for symbol, instrument in self.instruments.items():
                price = self._prices[symbol] * (1 + self._rng.normal(0, instrument.volatility))
                self._prices[symbol] = price
                yield Tick.normalize(symbol, now_ms(), price=price, spread_pct=instrument.spread_pct)
            await asyncio.sleep(self.interval)


# ── Supervisor ───────────────────────────────────────────────────────────────

class FeedSupervisor:
    """Reconnect state machine with capped exponential backoff and failover."""

    def __init__(
        self,
        sources: List[FeedSource],
        on_tick: Callable[[Tick], Any],
        silence_timeout: float = 30.0,
        backoff_base: float = 1.0,
        backoff_cap: float = 60.0,
        failover_after: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not sources:
            raise ValueError("FeedSupervisor needs at least one source")
        self.sources = sources
        self.on_tick = on_tick
        self.silence_timeout = silence_timeout
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.failover_after = failover_after
        self._sleep = sleep

        self.state = FeedState.IDLE
        self.source_index = 0
        self.failures = 0
        self.epoch = 0
        self.last_tick_ms = 0
        self.last_error = ""
        self._running = False

    @property
    def current_source(self) -> FeedSource:
        return self.sources[self.source_index]

    def _set_state(self, state: FeedState) -> None:
        if state != self.state:
            logger.info(f"Feed {self.state.value} -> {state.value} [{self.current_source.name}]")
            self.state = state

    def next_backoff(self) -> float:
        """Delay before the next attempt, from the consecutive failure count."""
        if self.failures <= 0:
            return 0.0
        return min(self.backoff_base * 2 ** (self.failures - 1), self.backoff_cap)

    def _register_failure(self, reason: str) -> None:
        self.failures += 1
        self.last_error = reason
        self._set_state(FeedState.DEGRADED)
        logger.warning(f"Feed [{self.current_source.name}] failure #{self.failures}: {reason}")

        if self.failures >= self.failover_after and len(self.sources) > 1:
            old = self.current_source.name
            self.source_index = (self.source_index + 1) % len(self.sources)
            self.failures = 0
            logger.warning(f"Feed failover {old} -> {self.current_source.name}")

    def request_reconnect(self) -> None:
        """Abandon the current connection; its remaining ticks are discarded."""
        self.epoch += 1

    def stop(self) -> None:
        self._running = False
        self.epoch += 1
        self._set_state(FeedState.IDLE)

    async def _consume(self, epoch: int) -> str:
        """Stream from the current source until it ends, goes silent or is superseded."""
        iterator = self.current_source.stream().__aiter__()
        try:
            while self._running:
                try:
                    tick = await asyncio.wait_for(iterator.__anext__(), timeout=self.silence_timeout)
                except StopAsyncIteration:
                    return "stream closed"
                except asyncio.TimeoutError:
                    return f"no ticks for {self.silence_timeout:.0f}s"

                if epoch != self.epoch:
                    return "superseded"
                if self.state != FeedState.STREAMING:
                    self.failures = 0
                    self._set_state(FeedState.STREAMING)
                self.last_tick_ms = tick.timestamp
                self.on_tick(tick)
            return "stopped"
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def run(self) -> None:
        self._running = True
        while self._running:
            self.epoch += 1
            epoch = self.epoch
            self._set_state(FeedState.CONNECTING)
            try:
                reason = await self._consume(epoch)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"

            if not self._running:
                break
            if reason == "superseded":
                continue

            self._register_failure(reason)
            await self._sleep(self.next_backoff())

        self._set_state(FeedState.IDLE)

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "source": self.current_source.name,
            "failures": self.failures,
            "lastTick": self.last_tick_ms,
            "lastError": self.last_error,
        }

    @classmethod
    def from_config(
        cls,
        cfg: Mapping[str, Any],
        instruments: Mapping[str, Instrument],
        on_tick: Callable[[Tick], Any],
        simulate: bool = False,
    ) -> "FeedSupervisor":
        spreads = {s: i.spread_pct for s, i in instruments.items()}
        sources: List[FeedSource] = []
        if not simulate:
            for src in lookup(cfg, "feed.sources", []) or []:
                parser = PARSERS.get(src.get("format", ""))
                if parser is None:
                    logger.warning(f"Feed source {src.get('name')} has unknown format {src.get('format')}")
                    continue
                sources.append(WebSocketFeedSource(
                    name=src.get("name", src["format"]),
                    url=src["url"],
                    parser=parser,
                    symbol_map=src.get("symbols", {}),
                    spreads=spreads,
                    subscribe=src.get("subscribe"),
                ))
        if not sources:
            logger.info("No live feed sources configured, using simulated feed")
            sources.append(SimulatedFeedSource(instruments, float(lookup(cfg, "feed.simulated_interval_sec", 1.0))))

        return cls(
            sources=sources,
            on_tick=on_tick,
            silence_timeout=float(lookup(cfg, "feed.silence_timeout_sec", 30)),
            backoff_base=float(lookup(cfg, "feed.backoff_base_sec", 1)),
            backoff_cap=float(lookup(cfg, "feed.backoff_cap_sec", 60)),
            failover_after=int(lookup(cfg, "feed.failover_after", 3)),
        )
