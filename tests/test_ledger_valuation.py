from __future__ import annotations

from decimal import Decimal

from papertrade.ledger import buy, valuation
from papertrade.models import Account


def test_valuation_marks_positions_to_last_price() -> None:
    acct = buy(Account.opening(Decimal("10000")), "AAPL", 10, 100)
    acct = buy(acct, "MSFT", 2, 300)

    snap = valuation(acct, {"AAPL": 105.0, "MSFT": Decimal("290")})

    rows = {r.symbol: r for r in snap.positions}
    assert rows["AAPL"].market_value == Decimal("1050")
    assert rows["AAPL"].unrealized == (Decimal("105") - Decimal("100")) * 10
    assert rows["MSFT"].unrealized == Decimal("-20")
    assert snap.holdings_value == Decimal("1630")
    assert snap.balance == Decimal("8400")
    assert snap.equity == Decimal("10030")
    assert snap.unrealized == Decimal("30")


def test_valuation_without_price_falls_back_to_cost() -> None:
    acct = buy(Account.opening(Decimal("1000")), "XYZ", 4, 25)
    snap = valuation(acct, {"XYZ": float("nan")})
    row = snap.positions[0]
    assert row.last_price is None
    assert row.market_value == row.cost_basis == Decimal("100")
    assert row.unrealized == 0
    assert snap.equity == Decimal("1000")


def test_valuation_of_empty_account() -> None:
    snap = valuation(Account.opening(Decimal("500")), {})
    assert snap.positions == []
    assert snap.equity == Decimal("500")
    assert snap.holdings_value == 0
