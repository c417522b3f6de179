"""
Throttled cache in front of the advisory provider.

At most one call in flight per symbol, a minimum interval between calls,
and a maximum age after which the cached opinion counts as no opinion.
Provider calls run in a worker thread so ticks are never blocked.
"""
import asyncio
from typing import Any, Callable, Dict, Optional

from loguru import logger

from ..core.constants import ONE_MINUTE_MS
from ..core.exceptions import AdvisoryError
from ..core.models import Advisory
from ..utils.time_utils import now_ms
from .llm_advisor import AdvisoryProvider


class AdvisoryCache:

    def __init__(
        self,
        provider: AdvisoryProvider,
        min_interval_ms: int = 5 * ONE_MINUTE_MS,
        max_age_ms: int = 30 * ONE_MINUTE_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self.provider = provider
        self.min_interval_ms = min_interval_ms
        self.max_age_ms = max_age_ms
        self._clock = clock
        self._entries: Dict[str, Advisory] = {}
        self._busy: Dict[str, bool] = {}
        self._last_request: Dict[str, int] = {}
        self._seq: Dict[str, int] = {}

    def get(self, symbol: str, now: Optional[int] = None) -> Advisory:
        """Cached opinion, or no opinion if missing or too old."""
        now = self._clock() if now is None else now
        entry = self._entries.get(symbol)
        if entry is None or not entry.is_fresh(now, self.max_age_ms):
            return Advisory.no_opinion()
        return entry

    def is_busy(self, symbol: str) -> bool:
        return self._busy.get(symbol, False)

    def should_refresh(self, symbol: str, now: Optional[int] = None) -> bool:
        now = self._clock() if now is None else now
        if self.is_busy(symbol):
            return False
        last = self._last_request.get(symbol)
        return last is None or now - last >= self.min_interval_ms

    def invalidate(self, symbol: str) -> None:
        """Forget the cached opinion; an in-flight result will be discarded."""
        self._entries.pop(symbol, None)
        self._seq[symbol] = self._seq.get(symbol, 0) + 1

    def set(self, symbol: str, advisory: Advisory) -> None:
        self._entries[symbol] = advisory

    async def refresh(self, symbol: str, snapshot: Dict[str, Any]) -> Optional[Advisory]:
        """
        Ask the provider for a new opinion if the throttle allows.

        Returns the applied advisory, a no-opinion value when the provider
        failed (the cached entry is left as it was), or None when throttled
        or superseded.
        """
        now = self._clock()
        if not self.should_refresh(symbol, now):
            return None

        self._busy[symbol] = True
        self._last_request[symbol] = now
        seq = self._seq.get(symbol, 0) + 1
        self._seq[symbol] = seq
        try:
            result = await asyncio.to_thread(self.provider.advise, symbol, snapshot)
        except AdvisoryError as e:
            logger.warning(f"Advisory for {symbol} failed: {e}")
            return Advisory.no_opinion(f"advisory unavailable: {e}", now)
        except Exception as e:
            logger.error(f"Advisory provider error for {symbol}: {type(e).__name__}: {e}")
            return Advisory.no_opinion(f"advisory unavailable: {e}", now)
        finally:
            self._busy[symbol] = False

        if seq != self._seq.get(symbol):
            logger.debug(f"Discarding superseded advisory for {symbol}")
            return None

        self._entries[symbol] = result
        logger.info(
            f"Advisory {symbol} | {result.sentiment.value} {result.confidence:.0f}% | {result.reason}"
        )
        return result
