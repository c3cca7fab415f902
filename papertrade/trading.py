from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Optional, TypeVar, Union

from papertrade import ledger
from papertrade.errors import ConcurrentModification, LedgerError, NotAuthenticated, VersionConflict
from papertrade.models import DEFAULT_INITIAL_BALANCE, Account, TradeRecord
from papertrade.persistence.base import AccountStore

R = TypeVar("R")

DEFAULT_MAX_WRITE_RETRIES = 5


def require_uid(uid: Optional[str]) -> str:
    if uid is None or not str(uid).strip():
        raise NotAuthenticated()
    return str(uid).strip()


class AccountService:
    """Shared read / create / conditional-write loop over an AccountStore."""

    def __init__(
        self,
        store: AccountStore,
        *,
        initial_balance: Decimal = DEFAULT_INITIAL_BALANCE,
        max_write_retries: int = DEFAULT_MAX_WRITE_RETRIES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.initial_balance = Decimal(initial_balance)
        self.max_write_retries = max(1, int(max_write_retries))
        self._log = logger or logging.getLogger("accounts")

    def ensure_account(self, uid: Optional[str]) -> Account:
        """Return the user's account, creating it with the opening balance on first sight."""
        uid = require_uid(uid)
        for _ in range(self.max_write_retries):
            existing = self.store.read(uid)
            if existing is not None:
                return existing
            try:
                created = self.store.write(uid, Account.opening(self.initial_balance), expected_version=0, reason="create")
            except VersionConflict:
                continue
            self._log.info("account_created", extra={"uid": uid, "balance": str(created.balance)})
            return created
        raise ConcurrentModification(f"Could not create account {uid!r}")

    def _mutate(
        self,
        uid: str,
        compute: Callable[[Account], Union[Account, R]],
        *,
        reason: str,
    ) -> Union[Account, R]:
        """Apply ``compute`` to the latest account and write the result conditionally.

        ``compute`` returns a new Account to persist, the same Account object to
        skip the write, or anything else (a rejection) which is handed back as is.
        Conflicts re-read and recompute up to ``max_write_retries`` times.
        """
        for attempt in range(1, self.max_write_retries + 1):
            current = self.ensure_account(uid)
            result = compute(current)
            if not isinstance(result, Account) or result is current:
                return result
            try:
                return self.store.write(uid, result, expected_version=current.version, reason=reason)
            except VersionConflict as exc:
                self._log.warning(
                    "write_conflict",
                    extra={"uid": uid, "attempt": attempt, "expected": exc.expected_version, "actual": exc.actual_version},
                )
        raise ConcurrentModification(
            f"Account {uid!r} kept changing; gave up after {self.max_write_retries} attempts"
        )


class TradingService(AccountService):
    """Buy/sell against a user's stored account."""

    def __init__(self, store: AccountStore, **kwargs: Any) -> None:
        kwargs.setdefault("logger", logging.getLogger("trading"))
        super().__init__(store, **kwargs)

    def get_account(self, uid: Optional[str]) -> Account:
        return self.ensure_account(uid)

    def trades(self, uid: Optional[str]) -> list[TradeRecord]:
        return list(self.ensure_account(uid).trades)

    def buy(self, uid: Optional[str], symbol: Any, qty: Any, price: Any) -> Union[Account, LedgerError]:
        return self._trade("BUY", uid, symbol, qty, price)

    def sell(self, uid: Optional[str], symbol: Any, qty: Any, price: Any) -> Union[Account, LedgerError]:
        return self._trade("SELL", uid, symbol, qty, price)

    def _trade(self, side: str, uid: Optional[str], symbol: Any, qty: Any, price: Any) -> Union[Account, LedgerError]:
        uid = require_uid(uid)
        op = ledger.buy if side == "BUY" else ledger.sell
        result = self._mutate(uid, lambda acct: op(acct, symbol, qty, price), reason="trade")

        if isinstance(result, LedgerError):
            self._log.info(
                "trade_rejected",
                extra={"uid": uid, "side": side, "symbol": symbol, "qty": qty, "price": str(price), "code": result.code.value},
            )
            return result

        trade = result.trades[-1]
        self._log.info(
            "trade_committed",
            extra={
                "uid": uid,
                "side": side,
                "symbol": trade.symbol,
                "qty": trade.qty,
                "price": str(trade.price),
                "balance": str(result.balance),
                "pos_qty": result.position_qty(trade.symbol),
                "version": result.version,
            },
        )
        return result
