"""Persisted snapshot: the unit of durability."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from ..core.constants import SCHEMA_VERSION
from ..core.exceptions import SnapshotCorruptError
from ..core.models import Account, Trade
from .reconciliation import parse_trades


@dataclass
class Snapshot:
    account: Account = field(default_factory=Account)
    trades: List[Trade] = field(default_factory=list)
    push_subscriptions: List[Dict[str, Any]] = field(default_factory=list)
    assets_config: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    saved_at: int = 0
    schema_version: int = SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "savedAt": self.saved_at,
            "account": self.account.to_dict(),
            "trades": [t.to_dict() for t in self.trades],
            "pushSubscriptions": list(self.push_subscriptions),
            "assetsConfig": {k: dict(v) for k, v in self.assets_config.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        """Accepts versioned and pre-versioning documents."""
        if not isinstance(data, Mapping):
            raise SnapshotCorruptError(f"Snapshot root is {type(data).__name__}, expected object")
        trades = data.get("trades") or []
        if not isinstance(trades, list):
            raise SnapshotCorruptError("Snapshot 'trades' is not a list")

        raw_account = data.get("account") or {}
        account = Account(
            balance=float(raw_account.get("balance", Account.balance)),
            equity=float(raw_account.get("equity", Account.equity)),
            day_pnl=float(raw_account.get("dayPnL", 0.0)),
            total_pnl=float(raw_account.get("totalPnL", 0.0)),
            win_rate=float(raw_account.get("winRate", 0.0)),
        )
        return cls(
            account=account,
            trades=parse_trades(trades),
            push_subscriptions=list(data.get("pushSubscriptions") or []),
            assets_config=dict(data.get("assetsConfig") or {}),
            saved_at=int(data.get("savedAt") or 0),
            schema_version=int(data.get("schemaVersion") or SCHEMA_VERSION),
        )
