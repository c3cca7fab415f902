from __future__ import annotations

import copy
import logging
import threading
from dataclasses import replace
from typing import Any, Dict, Optional, Tuple

from papertrade.bus import EventBus
from papertrade.errors import StoreUnavailable, VersionConflict
from papertrade.models import Account
from papertrade.persistence import codec
from papertrade.persistence.base import AccountStore


class MemoryAccountStore(AccountStore):
    """In-process store for tests and dry runs.

    Documents are kept encoded, like a document database would hold them, so
    reads always hand back fresh Account values.
    """

    def __init__(self, bus: Optional[EventBus] = None) -> None:
        super().__init__(bus)
        self._log = logging.getLogger("store.memory")
        self._docs: Dict[str, Tuple[int, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def read(self, uid: str) -> Optional[Account]:
        with self._lock:
            entry = self._docs.get(uid)
        if entry is None:
            return None
        version, doc = entry
        try:
            return codec.account_from_doc(doc, version)
        except codec.DocumentError as exc:
            raise StoreUnavailable(f"Corrupt account document for {uid!r}: {exc}") from exc

    def write(self, uid: str, account: Account, *, expected_version: int, reason: str = "trade") -> Account:
        doc = codec.account_to_doc(account)
        with self._lock:
            current = self._docs.get(uid)
            actual = current[0] if current else 0
            if actual != expected_version:
                raise VersionConflict(uid, expected_version, actual)
            new_version = expected_version + 1
            self._docs[uid] = (new_version, doc)
        committed = replace(account, version=new_version)
        self._log.debug("account_written", extra={"uid": uid, "version": new_version, "reason": reason})
        self._publish_commit(uid, committed, reason)
        return committed

    def put_raw(self, uid: str, doc: Dict[str, Any], version: int = 1) -> None:
        """Seed a document verbatim (fixtures, imports of legacy data)."""
        with self._lock:
            self._docs[uid] = (version, copy.deepcopy(doc))

    def raw(self, uid: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._docs.get(uid)
        return copy.deepcopy(entry[1]) if entry else None
