"""Engine, live feed supervision and state broadcasting."""

from .feed_supervisor import (
    FeedSource,
    FeedSupervisor,
    SimulatedFeedSource,
    WebSocketFeedSource,
    parse_binance_message,
    parse_coinbase_message,
)
from .state_broadcaster import StateBroadcaster
from .trading_engine import TradingEngine, load_instruments

__all__ = [
    "FeedSource",
    "FeedSupervisor",
    "SimulatedFeedSource",
    "WebSocketFeedSource",
    "parse_binance_message",
    "parse_coinbase_message",
    "StateBroadcaster",
    "TradingEngine",
    "load_instruments",
]
