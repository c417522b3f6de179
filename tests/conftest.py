"""
Shared pytest fixtures for the sentinel_trader test suite.
All fixtures use synthetic XAU/USD-like data. No network access required.
"""
import os
import sys
from datetime import datetime, timezone

import numpy as np
import pytest

# Ensure the repository root is on path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sentinel_trader.advisory import AdvisoryCache, AdvisoryProvider  # noqa: E402
from sentinel_trader.core import (  # noqa: E402
    Advisory,
    AssetState,
    Candle,
    Instrument,
    SessionWindow,
    Sentiment,
    TakeProfitLevel,
    Trade,
    TradeType,
)
from sentinel_trader.persistence import StateStore  # noqa: E402

# 2026-02-10 08:00:00 UTC
BASE_MS = int(datetime(2026, 2, 10, 8, 0, tzinfo=timezone.utc).timestamp() * 1000)
MINUTE = 60_000


# ── Candle generators ────────────────────────────────────────────────────────

def make_candles(n: int, base_price: float = 2000.0, trend: float = 0.0, volatility: float = 1.0,
                 seed: int = 42, start_ms: int = BASE_MS, minutes: int = 5, closed: bool = True):
    """Synthetic closed candles with an optional drift."""
    rng = np.random.default_rng(seed)
    candles = []
    price = base_price
    for i in range(n):
        o = price
        c = max(o + trend + rng.normal(0, volatility), 1.0)
        hi = max(o, c) + abs(rng.normal(0, volatility / 2))
        lo = min(o, c) - abs(rng.normal(0, volatility / 2))
        candles.append(Candle(round(o, 2), round(hi, 2), round(lo, 2), round(c, 2),
                              start_ms + i * minutes * MINUTE, is_closed=closed, volume=10))
        price = c
    return candles


def flat_candles(n: int, price: float = 2000.0, spread: float = 1.0, start_ms: int = BASE_MS):
    """Candles oscillating inside a fixed band."""
    return [
        Candle(price, price + spread, price - spread, price, start_ms + i * 5 * MINUTE, is_closed=True)
        for i in range(n)
    ]


# ── Clock / providers ────────────────────────────────────────────────────────

class FixedClock:
    """Callable clock that tests advance by hand."""

    def __init__(self, now: int = BASE_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeProvider(AdvisoryProvider):
    """Returns queued answers (Advisory or exception) and counts calls."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = 0

    def advise(self, symbol, snapshot):
        self.calls += 1
        answer = self.answers.pop(0) if self.answers else Advisory(Sentiment.NEUTRAL, 0.0, "", BASE_MS)
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeCloudStore:
    """In-memory cloud document."""

    def __init__(self, document=None, fail=False):
        self.document = document
        self.fail = fail
        self.writes = []

    def get(self):
        if self.fail:
            raise ConnectionError("cloud unreachable")
        return self.document

    def set(self, snapshot):
        if self.fail:
            raise ConnectionError("cloud unreachable")
        self.writes.append(snapshot)
        self.document = snapshot


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def gold():
    return Instrument(
        symbol="XAU/USD",
        start_price=2000.0,
        volatility=0.001,
        decimals=2,
        min_lot=0.01,
        max_lot=50.0,
        lot_step=0.01,
        spread_pct=0.0001,
        value_per_point=1.0,
        default_strategies=("TREND_FOLLOW",),
    )


@pytest.fixture
def nas():
    return Instrument(
        symbol="NAS100",
        start_price=18500.0,
        volatility=0.0015,
        decimals=1,
        spread_pct=0.0001,
        default_strategies=("SESSION_BREAKOUT",),
        session=SessionWindow(start_minute=13 * 60 + 30, end_minute=16 * 60, hard_close_minute=20 * 60 + 45),
    )


@pytest.fixture
def instruments(gold, nas):
    return {gold.symbol: gold, nas.symbol: nas}


@pytest.fixture
def gold_asset(gold):
    asset = AssetState.create(gold)
    asset.bid = 1999.9
    asset.ask = 2000.1
    return asset


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store(tmp_path):
    return StateStore(str(tmp_path / "state.json"), str(tmp_path / "archive"))


@pytest.fixture
def no_opinion():
    return Advisory.no_opinion()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def advisory_cache(fake_provider, clock):
    return AdvisoryCache(fake_provider, min_interval_ms=5 * MINUTE, max_age_ms=30 * MINUTE, clock=clock)


def open_buy(symbol="XAU/USD", entry=2000.0, size=1.0, stop=1997.0, open_time=BASE_MS,
             strategy="TREND_FOLLOW", trade_id="t1"):
    """A BUY with the 2006/2010/2030 ladder used across position tests."""
    return Trade(
        id=trade_id,
        symbol=symbol,
        type=TradeType.BUY,
        strategy=strategy,
        entry_price=entry,
        initial_size=size,
        stop_loss=stop,
        open_time=open_time,
        tp_levels=[
            TakeProfitLevel(1, entry + 6, 0.4),
            TakeProfitLevel(2, entry + 10, 0.4),
            TakeProfitLevel(3, entry + 30, 0.2),
        ],
    )
