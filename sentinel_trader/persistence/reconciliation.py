"""
Trade reconciliation across sources (local state, cloud, imports).

Trades are matched by business key. For a shared key the incoming record
replaces the existing one only when it is more complete: it closed a trade
that was still open, or it carries a strictly later close time. Applying a
merge twice changes nothing.
"""
import csv
import io
from typing import Any, Dict, Iterable, List, Mapping, Union

from loguru import logger

from ..core.models import Trade

_FLOAT_COLUMNS = ("entryPrice", "initialSize", "currentSize", "stopLoss", "pnl", "floatingPnl", "closePrice")
_INT_COLUMNS = ("openTime", "closeTime")


def _key_part(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def trade_key(trade: Union[Trade, Mapping[str, Any]]) -> str:
    """
    Business identity: the trade id, else symbol|entryPrice|openTime|initialSize
    (empty parts skipped).
    """
    if isinstance(trade, Mapping):
        trade = Trade.from_dict(trade)
    if trade.id:
        return str(trade.id)
    parts = [trade.symbol, trade.entry_price, trade.open_time, trade.initial_size]
    return "|".join(_key_part(p) for p in parts if p)


def prefer_incoming(existing: Trade, incoming: Trade) -> bool:
    """True when `incoming` is the more complete record for the same key."""
    if existing.is_open and not incoming.is_open:
        return True
    return (
        existing.close_time is not None
        and incoming.close_time is not None
        and incoming.close_time > existing.close_time
    )


def merge_trades(local: Iterable[Trade], incoming: Iterable[Trade]) -> List[Trade]:
    """
    Merge two trade sets. Local order is kept; new incoming keys are appended
    in their own order.
    """
    merged: Dict[str, Trade] = {}
    for source in (local, incoming):
        for trade in source:
            key = trade_key(trade)
            if not key:
                continue
            existing = merged.get(key)
            if existing is None or prefer_incoming(existing, trade):
                merged[key] = trade
    return list(merged.values())


def parse_trades(records: Iterable[Mapping[str, Any]]) -> List[Trade]:
    """Dicts -> Trades, skipping records that cannot be parsed."""
    trades = []
    for record in records:
        try:
            trades.append(Trade.from_dict(record))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping unreadable trade record: {e}")
    return trades


def parse_trades_csv(text: str) -> List[Trade]:
    """
    CSV export -> Trades. The first row is the header; rows whose column
    count differs from it are skipped.
    """
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    if len(rows) < 2:
        return []

    header = [h.strip() for h in rows[0]]
    records = []
    skipped = 0
    for row in rows[1:]:
        if len(row) != len(header):
            skipped += 1
            continue
        record: Dict[str, Any] = {}
        try:
            for name, raw in zip(header, row):
                value: Any = raw.strip()
                if value and name in _FLOAT_COLUMNS:
                    value = float(value)
                elif value and name in _INT_COLUMNS:
                    value = int(float(value))
                record[name] = value
        except ValueError:
            skipped += 1
            continue
        records.append(record)

    if skipped:
        logger.warning(f"CSV import skipped {skipped} malformed row(s)")
    return parse_trades(records)
