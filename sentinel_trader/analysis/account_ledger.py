"""
Account ledger: derives balance, equity, day PnL, total PnL and win rate
from the trade set. Pure recomputation; the account is never adjusted by hand.

  balance  = initial + sum(realized pnl of every trade, partial closes included)
  equity   = balance + sum(floating pnl of open trades)
  dayPnL   = realized pnl of trades still open or closed since UTC midnight
  winRate  = closed trades with pnl > 0 / closed trades * 100
"""
from typing import Iterable

from ..core.constants import INITIAL_BALANCE
from ..core.models import Account, Trade
from ..utils.time_utils import utc_day_start


def recompute(trades: Iterable[Trade], now_ms: int, initial_balance: float = INITIAL_BALANCE) -> Account:
    trades = list(trades)
    day_start = utc_day_start(now_ms)

    total_pnl = sum(t.pnl for t in trades)
    floating = sum(t.floating_pnl for t in trades if t.is_open)
    day_pnl = sum(
        t.pnl for t in trades
        if t.is_open or (t.close_time is not None and t.close_time >= day_start)
    )

    closed = [t for t in trades if not t.is_open]
    wins = sum(1 for t in closed if t.pnl > 0)
    win_rate = wins / len(closed) * 100 if closed else 0.0

    balance = initial_balance + total_pnl
    return Account(
        balance=balance,
        equity=balance + floating,
        day_pnl=day_pnl,
        total_pnl=total_pnl,
        win_rate=win_rate,
    )
