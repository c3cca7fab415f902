from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation, getcontext
from typing import Any, Mapping, Optional, Union

from papertrade.errors import ErrorCode, LedgerError
from papertrade.models import Account, PortfolioSnapshot, Position, PositionValuation, TradeRecord, normalize_symbol

AVG_PRICE_QUANTUM = Decimal("0.00000001")

LedgerResult = Union[Account, LedgerError]

_log = logging.getLogger("ledger")


def coerce_qty(value: Any) -> Optional[int]:
    """Return ``value`` as a positive int, or None when it is not a whole positive count."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    try:
        number = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not number.is_finite() or number != number.to_integral_value():
        return None
    qty = int(number)
    return qty if qty > 0 else None


def coerce_price(value: Any) -> Optional[Decimal]:
    """Return ``value`` as a finite non-negative Decimal, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, float):
            # str() keeps the shortest repr; Decimal(float) would carry binary noise.
            number = Decimal(str(value))
        elif isinstance(value, str):
            number = Decimal(value.strip())
        else:
            number = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not number.is_finite() or number < 0:
        return None
    return number


def _validate(symbol: Any, qty: Any, price: Any) -> Union[tuple[str, int, Decimal], LedgerError]:
    sym = normalize_symbol(symbol)
    if not sym:
        return LedgerError(ErrorCode.INVALID_SYMBOL, "Symbol must not be empty")
    n = coerce_qty(qty)
    if n is None:
        return LedgerError(ErrorCode.INVALID_QUANTITY, f"Quantity must be a positive whole number, got {qty!r}")
    p = coerce_price(price)
    if p is None:
        return LedgerError(ErrorCode.INVALID_PRICE, f"Price must be a finite non-negative number, got {price!r}")
    return sym, n, p


def _quantize_avg(value: Decimal) -> Decimal:
    # Quantizing needs room for every integer digit plus the 8 places.
    if value.adjusted() + 1 - AVG_PRICE_QUANTUM.as_tuple().exponent > getcontext().prec:
        return value
    return value.quantize(AVG_PRICE_QUANTUM, rounding=ROUND_HALF_EVEN)


def _now(now: Optional[datetime]) -> datetime:
    ts = now if now is not None else datetime.now(timezone.utc)
    # Stored trade timestamps are epoch millis.
    return ts.replace(microsecond=ts.microsecond - ts.microsecond % 1000)


def buy(account: Account, symbol: Any, qty: Any, price: Any, *, now: Optional[datetime] = None) -> LedgerResult:
    """Debit ``qty * price`` and grow the position at a volume-weighted average cost.

    Returns the new Account, or a LedgerError leaving ``account`` untouched.
    """
    checked = _validate(symbol, qty, price)
    if isinstance(checked, LedgerError):
        return checked
    sym, n, p = checked

    cost = n * p
    if cost > account.balance:
        return LedgerError(
            ErrorCode.INSUFFICIENT_FUNDS,
            f"Buying {n} {sym} at {p} costs {cost}, balance is {account.balance}",
        )

    positions = dict(account.positions)
    current = positions.get(sym)
    if current is None:
        positions[sym] = Position(symbol=sym, qty=n, avg_price=p)
    else:
        new_qty = current.qty + n
        new_avg = _quantize_avg((current.avg_price * current.qty + cost) / new_qty)
        positions[sym] = Position(symbol=sym, qty=new_qty, avg_price=new_avg)

    trade = TradeRecord(side="BUY", symbol=sym, qty=n, price=p, timestamp=_now(now))
    _log.debug("buy_applied", extra={"symbol": sym, "qty": n, "price": str(p), "pos_qty": positions[sym].qty})
    return replace(
        account,
        balance=account.balance - cost,
        positions=positions,
        trades=account.trades + (trade,),
    )


def sell(account: Account, symbol: Any, qty: Any, price: Any, *, now: Optional[datetime] = None) -> LedgerResult:
    """Credit ``qty * price`` and shrink the position; the average cost is left as is.

    A position reduced to zero shares is removed.
    """
    checked = _validate(symbol, qty, price)
    if isinstance(checked, LedgerError):
        return checked
    sym, n, p = checked

    current = account.positions.get(sym)
    if current is None:
        return LedgerError(ErrorCode.NO_SUCH_POSITION, f"No position in {sym}")
    if n > current.qty:
        return LedgerError(ErrorCode.INSUFFICIENT_SHARES, f"Cannot sell {n} {sym}, holding {current.qty}")

    positions = dict(account.positions)
    remaining = current.qty - n
    if remaining == 0:
        del positions[sym]
    else:
        positions[sym] = replace(current, qty=remaining)

    trade = TradeRecord(side="SELL", symbol=sym, qty=n, price=p, timestamp=_now(now))
    _log.debug("sell_applied", extra={"symbol": sym, "qty": n, "price": str(p), "pos_qty": remaining})
    return replace(
        account,
        balance=account.balance + n * p,
        positions=positions,
        trades=account.trades + (trade,),
    )


def valuation(account: Account, prices: Mapping[str, Any], *, now: Optional[datetime] = None) -> PortfolioSnapshot:
    """Mark positions to ``prices``; a symbol without a usable price is valued at cost."""
    rows: list[PositionValuation] = []
    holdings = Decimal(0)
    unrealized_total = Decimal(0)
    for sym in sorted(account.positions):
        pos = account.positions[sym]
        last = coerce_price(prices.get(sym))
        cost_basis = pos.avg_price * pos.qty
        market_value = last * pos.qty if last is not None else cost_basis
        unreal = market_value - cost_basis
        rows.append(
            PositionValuation(
                symbol=sym,
                qty=pos.qty,
                avg_price=pos.avg_price,
                last_price=last,
                cost_basis=cost_basis,
                market_value=market_value,
                unrealized=unreal,
            )
        )
        holdings += market_value
        unrealized_total += unreal

    return PortfolioSnapshot(
        ts=_now(now),
        balance=account.balance,
        positions=rows,
        holdings_value=holdings,
        equity=account.balance + holdings,
        unrealized=unrealized_total,
    )
