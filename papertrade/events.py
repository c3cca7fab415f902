from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from papertrade.models import Account


@dataclass(frozen=True)
class AccountCommitted:
    """Published after every successful write of an account document."""

    ts: datetime
    uid: str
    version: int
    account: Account
    reason: Literal["create", "trade", "watchlist", "migrate"] = "trade"
