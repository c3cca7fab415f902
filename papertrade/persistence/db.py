from __future__ import annotations

import logging
import sqlite3
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from papertrade.bus import EventBus
from papertrade.errors import StoreUnavailable, VersionConflict
from papertrade.models import Account
from papertrade.persistence import codec
from papertrade.persistence.base import AccountStore


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteAccountStore(AccountStore):
    """Account documents in SQLite, one row per uid.

    Writes are ``UPDATE ... WHERE version = ?``; a zero rowcount means another
    writer got there first.
    """

    def __init__(self, sqlite_path: str, bus: Optional[EventBus] = None) -> None:
        super().__init__(bus)
        self._log = logging.getLogger("store.sqlite")
        self.path = Path(sqlite_path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.path.as_posix())
            self.conn.row_factory = sqlite3.Row
            self._apply_schema()
        except (OSError, sqlite3.Error) as exc:
            raise StoreUnavailable(f"Cannot open account store at {self.path}: {exc}") from exc

    def _apply_schema(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        self.conn.executescript(schema_path.read_text(encoding="utf-8"))
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def _version_of(self, uid: str) -> int:
        row = self.conn.execute("SELECT version FROM accounts WHERE uid=?", (uid,)).fetchone()
        return int(row["version"]) if row else 0

    def _row(self, uid: str) -> Optional[sqlite3.Row]:
        try:
            return self.conn.execute("SELECT version, doc FROM accounts WHERE uid=?", (uid,)).fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Account read failed for {uid!r}: {exc}") from exc

    def read(self, uid: str) -> Optional[Account]:
        row = self._row(uid)
        if row is None:
            return None
        try:
            return codec.account_from_doc(codec.loads(row["doc"]), int(row["version"]))
        except codec.DocumentError as exc:
            raise StoreUnavailable(f"Corrupt account document for {uid!r}: {exc}") from exc

    def raw(self, uid: str) -> Optional[Dict[str, Any]]:
        row = self._row(uid)
        if row is None:
            return None
        try:
            return codec.loads(row["doc"])
        except codec.DocumentError as exc:
            raise StoreUnavailable(f"Corrupt account document for {uid!r}: {exc}") from exc

    def write(self, uid: str, account: Account, *, expected_version: int, reason: str = "trade") -> Account:
        doc_text = codec.dumps(codec.account_to_doc(account))
        new_version = expected_version + 1
        now = _now_iso()
        try:
            if expected_version == 0:
                try:
                    self.conn.execute(
                        "INSERT INTO accounts(uid, version, doc, created_ts, updated_ts) VALUES(?,?,?,?,?)",
                        (uid, new_version, doc_text, now, now),
                    )
                except sqlite3.IntegrityError:
                    self.conn.rollback()
                    raise VersionConflict(uid, expected_version, self._version_of(uid))
            else:
                cur = self.conn.execute(
                    "UPDATE accounts SET version=?, doc=?, updated_ts=? WHERE uid=? AND version=?",
                    (new_version, doc_text, now, uid, expected_version),
                )
                if cur.rowcount == 0:
                    self.conn.rollback()
                    raise VersionConflict(uid, expected_version, self._version_of(uid))
            self.conn.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Account write failed for {uid!r}: {exc}") from exc

        committed = replace(account, version=new_version)
        self._log.debug("account_written", extra={"uid": uid, "version": new_version, "reason": reason})
        self._publish_commit(uid, committed, reason)
        return committed

    def uids(self) -> Iterator[str]:
        try:
            rows = self.conn.execute("SELECT uid FROM accounts ORDER BY uid").fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Account listing failed: {exc}") from exc
        for row in rows:
            yield row["uid"]

    def migrate_trade_timestamps(self) -> int:
        """Rewrite documents whose trades still use the legacy ``time`` field.

        Each rewrite is a normal conditional write, so a concurrent trade simply
        wins and that account is picked up on the next run. Returns the number of
        accounts rewritten.
        """
        rewritten = 0
        for uid in list(self.uids()):
            row = self._row(uid)
            if row is None:
                continue
            try:
                raw = codec.loads(row["doc"])
                if not codec.has_legacy_timestamps(raw):
                    continue
                account = codec.account_from_doc(raw, int(row["version"]))
            except codec.DocumentError as exc:
                self._log.error("migrate_skipped_corrupt", extra={"uid": uid, "error": str(exc)})
                continue
            try:
                self.write(uid, account, expected_version=account.version, reason="migrate")
            except VersionConflict:
                self._log.warning("migrate_conflict", extra={"uid": uid})
                continue
            rewritten += 1
        self._log.info("trade_timestamps_migrated", extra={"accounts": rewritten})
        return rewritten
