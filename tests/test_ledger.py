from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_config
from tradesim.services.ledger import (
    LIQUIDATION_REASON,
    InsufficientBalance,
    Ledger,
    NoOpenPosition,
    PositionAlreadyOpen,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _open(ledger, price=100.0, qty=0.36, **kwargs):
    return ledger.open_position(price, qty, price * 0.995, price * 1.018, T0, **kwargs)


def test_open_isolated_debits_margin_and_fee():
    ledger = Ledger(make_config())
    pos = _open(ledger)

    assert pos.position_value_at_entry == pytest.approx(36.0)
    assert pos.margin_used == pytest.approx(18.0)
    assert pos.entry_fee_paid == pytest.approx(0.036)
    assert ledger.balance == pytest.approx(200 - 18 - 0.036)


def test_open_cross_leaves_balance_untouched():
    ledger = Ledger(make_config(margin_mode="cross"))
    _open(ledger)
    assert ledger.balance == pytest.approx(200.0)


def test_insufficient_balance_checked_before_mutation():
    ledger = Ledger(make_config(initial_balance=20.0, leverage=1))
    with pytest.raises(InsufficientBalance) as exc:
        _open(ledger, qty=0.2)   # value 20 + fee 0.02
    assert exc.value.required == pytest.approx(20.02)
    assert ledger.balance == 20.0
    assert not ledger.has_position


def test_second_open_rejected():
    ledger = Ledger(make_config())
    _open(ledger)
    balance = ledger.balance
    with pytest.raises(PositionAlreadyOpen):
        _open(ledger)
    assert ledger.balance == balance


def test_close_without_position_raises():
    ledger = Ledger(make_config())
    with pytest.raises(NoOpenPosition):
        ledger.close_position(100.0, "x", T0)
    with pytest.raises(NoOpenPosition):
        ledger.liquidate(100.0, T0)


def test_close_returns_margin_plus_gross_minus_exit_fee():
    ledger = Ledger(make_config())
    _open(ledger)
    trade = ledger.close_position(101.8, "Take profit", T0 + timedelta(hours=3))

    assert trade.gross_profit == pytest.approx(0.648)
    assert trade.fees_paid == pytest.approx(0.036 + 0.036648)
    assert trade.net_profit == pytest.approx(0.575352)
    assert trade.profit_percent == pytest.approx(0.575352 / 36 * 100)
    assert trade.duration_minutes == pytest.approx(180)
    assert ledger.balance == pytest.approx(200.575352)
    assert not ledger.has_position


@pytest.mark.parametrize("mode", ["isolated", "cross"])
def test_balance_equals_initial_plus_net(mode):
    ledger = Ledger(make_config(margin_mode=mode))
    for exit_price in (101.0, 99.2, 100.05):
        _open(ledger)
        ledger.close_position(exit_price, "x", T0)
    total_net = sum(t.net_profit for t in ledger.trades)
    assert ledger.balance == pytest.approx(200.0 + total_net, abs=1e-9)


@pytest.mark.parametrize("mode", ["isolated", "cross"])
def test_equity_marks_open_position_to_market(mode):
    ledger = Ledger(make_config(margin_mode=mode))
    assert ledger.equity(100.0) == 200.0

    _open(ledger)
    assert ledger.equity(101.0) == pytest.approx(200 - 0.036 + 0.36)
    assert ledger.equity(99.0) == pytest.approx(200 - 0.036 - 0.36)


def test_account_balance_includes_isolated_margin():
    isolated = Ledger(make_config())
    _open(isolated)
    assert isolated.account_balance() == pytest.approx(200 - 0.036)

    cross = Ledger(make_config(margin_mode="cross"))
    _open(cross)
    assert cross.account_balance() == 200.0


def test_liquidation_threshold():
    ledger = Ledger(make_config(leverage=10))
    _open(ledger, qty=1.0)              # value 100, margin 10
    assert not ledger.check_liquidation(91.5)   # loss 8.5 < 9
    assert ledger.check_liquidation(90.9)       # loss 9.1 > 90% of margin


@pytest.mark.parametrize("mode", ["isolated", "cross"])
def test_liquidation_forfeits_margin_and_entry_fee(mode):
    ledger = Ledger(make_config(leverage=10, margin_mode=mode))
    _open(ledger, qty=1.0)
    trade = ledger.liquidate(90.0, T0 + timedelta(hours=1))

    assert trade.reason == LIQUIDATION_REASON
    assert trade.is_liquidation
    assert trade.net_profit == pytest.approx(-(10.0 + 0.1))
    assert trade.profit_percent == -100.0
    assert trade.fees_paid == pytest.approx(0.1)
    assert ledger.balance == pytest.approx(200.0 - 10.1)
    assert not ledger.has_position


def test_drawdown_tracks_peak():
    ledger = Ledger(make_config())
    ledger.balance = 220.0
    ledger.update_drawdown()
    ledger.balance = 198.0
    assert ledger.update_drawdown() == pytest.approx(10.0)
    ledger.balance = 215.0
    ledger.update_drawdown()
    assert ledger.peak_balance == 220.0
    assert ledger.max_drawdown_percent == pytest.approx(10.0)


def test_snapshot_is_a_copy():
    ledger = Ledger(make_config())
    _open(ledger)
    snap = ledger.snapshot()
    assert snap == ledger.position
    assert snap is not ledger.position
