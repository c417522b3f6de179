"""Local and cloud persistence, snapshot format and trade reconciliation."""

from .cloud_store import CloudStore, CloudSync, HttpCloudStore, create_cloud_sync
from .reconciliation import merge_trades, parse_trades, parse_trades_csv, prefer_incoming, trade_key
from .snapshot import Snapshot
from .state_store import StateStore

__all__ = [
    "CloudStore",
    "CloudSync",
    "HttpCloudStore",
    "create_cloud_sync",
    "merge_trades",
    "parse_trades",
    "parse_trades_csv",
    "prefer_incoming",
    "trade_key",
    "Snapshot",
    "StateStore",
]
