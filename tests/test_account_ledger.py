"""
Tests for sentinel_trader/analysis/account_ledger.py
"""
import pytest

from conftest import BASE_MS, MINUTE, open_buy
from sentinel_trader.analysis import recompute

DAY = 24 * 60 * MINUTE


def _closed(pnl, close_time=BASE_MS, trade_id="c"):
    trade = open_buy(open_time=close_time - MINUTE, trade_id=trade_id)
    trade.close(2000.0, close_time, "MANUAL", pnl, "manual close")
    return trade


class TestRecompute:
    def test_empty(self):
        account = recompute([], BASE_MS, 10000.0)
        assert account.balance == 10000.0
        assert account.equity == 10000.0
        assert account.win_rate == 0.0

    def test_balance_includes_partial_realized(self):
        trade = open_buy()
        trade.pnl = 2.4
        trade.floating_pnl = 1.2
        account = recompute([trade], BASE_MS, 10000.0)
        assert account.balance == pytest.approx(10002.4)
        assert account.equity == pytest.approx(10003.6)
        assert account.total_pnl == pytest.approx(2.4)

    def test_closed_floating_ignored(self):
        trade = _closed(5.0)
        trade.floating_pnl = 99.0
        assert recompute([trade], BASE_MS, 10000.0).equity == pytest.approx(10005.0)

    def test_win_rate(self):
        trades = [_closed(5.0, trade_id="a"), _closed(-2.0, trade_id="b"), _closed(1.0, trade_id="c"), _closed(0.0, trade_id="d")]
        assert recompute(trades, BASE_MS).win_rate == pytest.approx(50.0)

    def test_open_trades_excluded_from_win_rate(self):
        trades = [_closed(5.0), open_buy(trade_id="o")]
        assert recompute(trades, BASE_MS).win_rate == pytest.approx(100.0)

    def test_day_pnl_since_utc_midnight(self):
        yesterday = _closed(10.0, close_time=BASE_MS - DAY, trade_id="y")
        today = _closed(4.0, close_time=BASE_MS - MINUTE, trade_id="t")
        account = recompute([yesterday, today], BASE_MS, 10000.0)
        assert account.day_pnl == pytest.approx(4.0)
        assert account.total_pnl == pytest.approx(14.0)

    def test_is_pure(self):
        trades = [_closed(3.0)]
        assert recompute(trades, BASE_MS) == recompute(trades, BASE_MS)

    def test_to_dict_keys(self):
        data = recompute([_closed(3.333)], BASE_MS, 10000.0).to_dict()
        assert set(data) == {"balance", "equity", "dayPnL", "totalPnL", "winRate"}
        assert data["balance"] == 10003.33
