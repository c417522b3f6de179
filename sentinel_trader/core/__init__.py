"""Core domain types, constants and the candle aggregator."""

from .candle_aggregator import CandleAggregator, CandleClose
from .constants import (
    CloseReason,
    FeedState,
    RangeZone,
    Sentiment,
    SkipCode,
    StrategyId,
    Timeframe,
    TradeState,
    TradeType,
    TrendDirection,
)
from .exceptions import AdvisoryError, InvariantViolation, SnapshotCorruptError, TradingError
from .models import (
    Account,
    Advisory,
    AssetState,
    Candle,
    Instrument,
    MarketStructure,
    SessionWindow,
    SkipReason,
    StructureZone,
    SettledTakeProfitLevel,
    TakeProfitLevel,
    Tick,
    Trade,
    TradeIntent,
    build_ladder,
)

__all__ = [
    "CandleAggregator",
    "CandleClose",
    "CloseReason",
    "FeedState",
    "RangeZone",
    "Sentiment",
    "SkipCode",
    "StrategyId",
    "Timeframe",
    "TradeState",
    "TradeType",
    "TrendDirection",
    "AdvisoryError",
    "InvariantViolation",
    "SnapshotCorruptError",
    "TradingError",
    "Account",
    "Advisory",
    "AssetState",
    "Candle",
    "Instrument",
    "MarketStructure",
    "SessionWindow",
    "SkipReason",
    "StructureZone",
    "SettledTakeProfitLevel",
    "TakeProfitLevel",
    "Tick",
    "Trade",
    "TradeIntent",
    "build_ladder",
]
