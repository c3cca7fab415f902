from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Optional

from papertrade.errors import InvalidInput
from papertrade.models import Account, normalize_symbol
from papertrade.persistence import codec
from papertrade.trading import AccountService, require_uid


def _clean(symbol: Optional[str]) -> str:
    sym = normalize_symbol(symbol)
    if not sym:
        raise InvalidInput("Missing symbol")
    return sym


class WatchlistService(AccountService):
    """Symbols a user follows. Independent of balance and positions."""

    def __init__(self, store, **kwargs: Any) -> None:
        kwargs.setdefault("logger", logging.getLogger("watchlist"))
        super().__init__(store, **kwargs)

    def get(self, uid: Optional[str]) -> list[str]:
        uid = require_uid(uid)
        acct = self.ensure_account(uid)
        if not codec.has_watchlist(self.store.raw(uid)):
            # Older documents predate the watchlist field; store it empty.
            acct = self._mutate(uid, lambda current: replace(current), reason="watchlist")
            self._log.info("watchlist_initialized", extra={"uid": uid, "version": acct.version})
        return list(acct.watchlist)

    def add(self, uid: Optional[str], symbol: Optional[str]) -> list[str]:
        uid = require_uid(uid)
        sym = _clean(symbol)

        def compute(acct: Account) -> Account:
            if sym in acct.watchlist:
                return acct
            return replace(acct, watchlist=acct.watchlist + (sym,))

        result = self._mutate(uid, compute, reason="watchlist")
        self._log.info("watchlist_add", extra={"uid": uid, "symbol": sym, "version": result.version})
        return list(result.watchlist)

    def remove(self, uid: Optional[str], symbol: Optional[str]) -> list[str]:
        uid = require_uid(uid)
        sym = _clean(symbol)
        if self.store.read(uid) is None:
            return []

        def compute(acct: Account) -> Account:
            if sym not in acct.watchlist:
                return acct
            return replace(acct, watchlist=tuple(s for s in acct.watchlist if s != sym))

        result = self._mutate(uid, compute, reason="watchlist")
        self._log.info("watchlist_remove", extra={"uid": uid, "symbol": sym, "version": result.version})
        return list(result.watchlist)
