from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    INVALID_SYMBOL = "INVALID_SYMBOL"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_PRICE = "INVALID_PRICE"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_SHARES = "INSUFFICIENT_SHARES"
    NO_SUCH_POSITION = "NO_SUCH_POSITION"


_INVALID_INPUT_CODES = frozenset({ErrorCode.INVALID_SYMBOL, ErrorCode.INVALID_QUANTITY, ErrorCode.INVALID_PRICE})


@dataclass(frozen=True)
class LedgerError:
    """A rejected trade. Returned by the ledger, never raised."""

    code: ErrorCode
    message: str

    @property
    def is_invalid_input(self) -> bool:
        return self.code in _INVALID_INPUT_CODES

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class PaperTradeError(Exception):
    pass


class InvalidInput(PaperTradeError, ValueError):
    pass


class NotAuthenticated(PaperTradeError):
    def __init__(self, message: str = "No user id supplied") -> None:
        super().__init__(message)


class StoreUnavailable(PaperTradeError):
    pass


class VersionConflict(PaperTradeError):
    def __init__(self, uid: str, expected_version: int, actual_version: int) -> None:
        super().__init__(f"Account {uid!r} is at version {actual_version}, expected {expected_version}")
        self.uid = uid
        self.expected_version = expected_version
        self.actual_version = actual_version


class ConcurrentModification(PaperTradeError):
    pass


class AdapterUnavailable(PaperTradeError):
    pass
