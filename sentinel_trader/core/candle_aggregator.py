"""
Candle aggregator: folds ticks into fixed-duration OHLC candles.

One bounded ring per (symbol, timeframe). A candle opens at the first tick
price, updates in place until its duration elapses, then closes and the
closing tick opens the next candle. Quiet instruments are not gap-filled.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from .constants import CANDLE_RING_SIZE, Timeframe
from .models import Candle, Tick


@dataclass(frozen=True)
class CandleClose:
    """Emitted when a candle period elapses."""
    symbol: str
    timeframe: Timeframe
    candle: Candle


class CandleAggregator:
    """Per-instrument, per-timeframe candle rings."""

    def __init__(
        self,
        timeframes: Sequence[Timeframe] = (Timeframe.M5, Timeframe.M15),
        ring_size: int = CANDLE_RING_SIZE,
    ):
        self.timeframes = tuple(timeframes)
        self.ring_size = ring_size
        self._rings: Dict[Tuple[str, Timeframe], Deque[Candle]] = {}

    def _ring(self, symbol: str, timeframe: Timeframe) -> Deque[Candle]:
        key = (symbol, timeframe)
        if key not in self._rings:
            self._rings[key] = deque(maxlen=self.ring_size)
        return self._rings[key]

    def on_tick(self, tick: Tick) -> List[CandleClose]:
        """Fold one tick into every timeframe; return the candles it closed."""
        closed: List[CandleClose] = []
        price = tick.mid
        for timeframe in self.timeframes:
            ring = self._ring(tick.symbol, timeframe)
            if not ring:
                ring.append(Candle(price, price, price, price, tick.timestamp))
                continue

            current = ring[-1]
            if tick.timestamp - current.time < timeframe.to_ms():
                current.update(price)
                continue

            current.is_closed = True
            closed.append(CandleClose(tick.symbol, timeframe, current))
            ring.append(Candle(price, price, price, price, tick.timestamp))
            logger.bind(kind="MARKET").debug(
                f"{tick.symbol} {timeframe.name} close | O={current.open} H={current.high} "
                f"L={current.low} C={current.close} ticks={current.volume}"
            )
        return closed

    def candles(self, symbol: str, timeframe: Timeframe, closed_only: bool = False) -> List[Candle]:
        """Copy of the ring, oldest first. Includes the open candle unless closed_only."""
        ring = self._rings.get((symbol, timeframe))
        if not ring:
            return []
        if closed_only:
            return [c for c in ring if c.is_closed]
        return list(ring)

    def current(self, symbol: str, timeframe: Timeframe) -> Optional[Candle]:
        ring = self._rings.get((symbol, timeframe))
        return ring[-1] if ring else None

    def seed(self, symbol: str, timeframe: Timeframe, candles: Iterable[Candle]) -> None:
        """Replace a ring with historical candles (warm start)."""
        ring = self._ring(symbol, timeframe)
        ring.clear()
        ring.extend(candles)
