from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from papertrade.bus import EventBus
from papertrade.events import AccountCommitted
from papertrade.models import Account


class AccountStore(ABC):
    """Per-user account documents with conditional (versioned) writes."""

    def __init__(self, bus: Optional[EventBus] = None) -> None:
        self.bus = bus or EventBus()

    @abstractmethod
    def read(self, uid: str) -> Optional[Account]:
        """Return the stored account with its version, or None when absent."""
        raise NotImplementedError

    @abstractmethod
    def write(self, uid: str, account: Account, *, expected_version: int, reason: str = "trade") -> Account:
        """Replace the whole document if the stored version equals ``expected_version``.

        ``expected_version=0`` creates the document. Returns ``account`` carrying
        the new version; raises VersionConflict when the check fails.
        """
        raise NotImplementedError

    @abstractmethod
    def raw(self, uid: str) -> Optional[Dict[str, Any]]:
        """Return the stored document as written, without decoding it into an Account."""
        raise NotImplementedError

    def subscribe(self, uid: str, handler: Callable[[AccountCommitted], None]) -> Callable[[], None]:
        """Call ``handler`` after each committed write for ``uid``. Returns an unsubscribe function."""
        return self.bus.subscribe(AccountCommitted, handler, topic=uid)

    def close(self) -> None:
        return

    def _publish_commit(self, uid: str, account: Account, reason: str) -> None:
        self.bus.publish(
            AccountCommitted(ts=datetime.now(timezone.utc), uid=uid, version=account.version, account=account, reason=reason),  # type: ignore[arg-type]
            topic=uid,
        )
