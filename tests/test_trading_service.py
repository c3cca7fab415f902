from __future__ import annotations

from decimal import Decimal
from typing import Callable, Optional

import pytest

from papertrade.errors import ConcurrentModification, ErrorCode, LedgerError, NotAuthenticated, VersionConflict
from papertrade.models import Account
from papertrade.persistence import MemoryAccountStore
from papertrade.trading import TradingService


class _RacingStore(MemoryAccountStore):
    """Runs ``interloper`` right before the next write lands, like a second device would."""

    def __init__(self) -> None:
        super().__init__()
        self.interloper: Optional[Callable[[], None]] = None
        self.writes = 0

    def write(self, uid, account, *, expected_version, reason="trade"):
        self.writes += 1
        if self.interloper is not None:
            run, self.interloper = self.interloper, None
            run()
        return super().write(uid, account, expected_version=expected_version, reason=reason)


class _AlwaysConflicting(MemoryAccountStore):
    def write(self, uid, account, *, expected_version, reason="trade"):
        if reason == "create":
            return super().write(uid, account, expected_version=expected_version, reason=reason)
        raise VersionConflict(uid, expected_version, expected_version + 1)


def test_first_sight_creates_account_with_opening_balance() -> None:
    store = MemoryAccountStore()
    svc = TradingService(store)

    acct = svc.get_account("u1")

    assert acct.balance == Decimal("100000")
    assert acct.positions == {}
    assert acct.trades == ()
    assert acct.watchlist == ()
    assert acct.version == 1
    assert svc.get_account("u1").version == 1


def test_initial_balance_is_configurable() -> None:
    svc = TradingService(MemoryAccountStore(), initial_balance=Decimal("2500"))
    assert svc.get_account("u1").balance == Decimal("2500")


def test_buy_and_sell_persist() -> None:
    store = MemoryAccountStore()
    svc = TradingService(store)

    svc.buy("u1", "aapl", 10, 150)
    svc.buy("u1", "AAPL", 10, 170)
    result = svc.sell("u1", "AAPL", 15, 180)

    assert isinstance(result, Account)
    stored = store.read("u1")
    assert stored == result
    assert stored.balance == Decimal("99500")
    assert stored.positions["AAPL"].qty == 5
    assert stored.positions["AAPL"].avg_price == Decimal("160")
    assert [t.side for t in svc.trades("u1")] == ["BUY", "BUY", "SELL"]


def test_rejection_writes_nothing() -> None:
    store = _RacingStore()
    svc = TradingService(store)
    svc.get_account("u1")
    writes_before = store.writes

    result = svc.sell("u1", "AAPL", 1, 100)

    assert isinstance(result, LedgerError)
    assert result.code is ErrorCode.NO_SUCH_POSITION
    assert store.writes == writes_before
    stored = store.read("u1")
    assert stored.balance == Decimal("100000")
    assert stored.trades == ()
    assert stored.version == 1


def test_missing_uid_is_not_authenticated() -> None:
    svc = TradingService(MemoryAccountStore())
    with pytest.raises(NotAuthenticated):
        svc.buy("", "AAPL", 1, 1)
    with pytest.raises(NotAuthenticated):
        svc.get_account(None)


def test_racing_trade_is_recomputed_not_lost() -> None:
    store = _RacingStore()
    svc = TradingService(store)
    other_device = TradingService(store)
    svc.get_account("u1")

    store.interloper = lambda: other_device.buy("u1", "MSFT", 5, 100)
    result = svc.buy("u1", "AAPL", 10, 150)

    assert isinstance(result, Account)
    stored = store.read("u1")
    assert stored.balance == Decimal("100000") - 500 - 1500
    assert set(stored.positions) == {"AAPL", "MSFT"}
    assert [t.symbol for t in stored.trades] == ["MSFT", "AAPL"]
    assert stored.version == 3


def test_racing_trade_rechecks_funds_after_conflict() -> None:
    store = _RacingStore()
    svc = TradingService(store, initial_balance=Decimal("1000"))
    other_device = TradingService(store, initial_balance=Decimal("1000"))
    svc.get_account("u1")

    store.interloper = lambda: other_device.buy("u1", "AAPL", 8, 100)
    result = svc.buy("u1", "AAPL", 5, 100)

    assert isinstance(result, LedgerError)
    assert result.code is ErrorCode.INSUFFICIENT_FUNDS
    stored = store.read("u1")
    assert stored.balance == Decimal("200")
    assert stored.positions["AAPL"].qty == 8
    assert len(stored.trades) == 1


def test_gives_up_after_max_retries() -> None:
    svc = TradingService(_AlwaysConflicting(), max_write_retries=3)
    with pytest.raises(ConcurrentModification):
        svc.buy("u1", "AAPL", 1, 1)


def test_commit_notifies_subscribers() -> None:
    store = MemoryAccountStore()
    svc = TradingService(store)
    versions: list[int] = []
    store.subscribe("u1", lambda evt: versions.append(evt.version))

    svc.buy("u1", "AAPL", 1, 10)
    svc.sell("u1", "AAPL", 1, 11)

    assert versions == [1, 2, 3]
