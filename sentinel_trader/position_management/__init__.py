"""Position lifecycle management."""

from .position_manager import (
    PositionConfig,
    PositionManager,
    TradeEvent,
    TradeEventKind,
    compute_lot_size,
)

__all__ = [
    "PositionConfig",
    "PositionManager",
    "TradeEvent",
    "TradeEventKind",
    "compute_lot_size",
]
