from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

Side = Literal["BUY", "SELL"]

DEFAULT_INITIAL_BALANCE = Decimal("100000")


def normalize_symbol(symbol: Optional[str]) -> str:
    """Trim and uppercase a ticker; empty string when nothing usable is given."""
    if symbol is None:
        return ""
    return str(symbol).strip().upper()


@dataclass(frozen=True)
class Position:
    symbol: str
    qty: int
    avg_price: Decimal


@dataclass(frozen=True)
class TradeRecord:
    side: Side
    symbol: str
    qty: int
    price: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class Account:
    """One user's paper account.

    ``version`` is the store's sequence number for the document this value was
    read from (0 = never persisted). Ledger and watchlist operations return new
    Account values; nothing mutates one in place.
    """

    balance: Decimal
    positions: dict[str, Position] = field(default_factory=dict)
    trades: tuple[TradeRecord, ...] = ()
    watchlist: tuple[str, ...] = ()
    version: int = 0

    @classmethod
    def opening(cls, balance: Decimal) -> "Account":
        return cls(balance=Decimal(balance))

    def position_qty(self, symbol: str) -> int:
        pos = self.positions.get(symbol)
        return pos.qty if pos else 0


@dataclass(frozen=True)
class PositionValuation:
    symbol: str
    qty: int
    avg_price: Decimal
    last_price: Optional[Decimal]
    cost_basis: Decimal
    market_value: Decimal
    unrealized: Decimal


@dataclass(frozen=True)
class PortfolioSnapshot:
    ts: datetime
    balance: Decimal
    positions: list[PositionValuation]
    holdings_value: Decimal
    equity: Decimal
    unrealized: Decimal


@dataclass(frozen=True)
class Quote:
    symbol: str
    current: float
    open: Optional[float]
    high: Optional[float]
    low: Optional[float]
    previous_close: Optional[float]
    change: Optional[float]
    change_pct: Optional[float]


@dataclass(frozen=True)
class PriceBar:
    day: date
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class CompanyProfile:
    symbol: str
    name: str = ""
    exchange: str = ""
    industry: str = ""
    currency: str = ""
    market_cap: Optional[float] = None
    metrics: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SymbolMatch:
    symbol: str
    description: str
    type: str


@dataclass(frozen=True)
class NewsArticle:
    headline: str
    source: str = ""
    url: str = ""
    summary: str = ""
    published: Optional[datetime] = None


@dataclass(frozen=True)
class Forecast:
    predicted: float
    confidence: float
    trend: Literal["UP", "DOWN", "FLAT"]


@dataclass(frozen=True)
class Sentiment:
    sentiment: float
    impact: Literal["positive", "negative", "neutral"]
    risk: Literal["low", "medium", "high"]
    summary: str
