"""Account <-> stored document.

Documents keep the field names the mobile client has always written
(``portfolio``, ``avgPrice``, ``type``). Trade records written by older
clients carry ``time`` instead of ``timestamp``; both are read, only
``timestamp`` is written.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from papertrade.models import DEFAULT_INITIAL_BALANCE, Account, Position, TradeRecord, normalize_symbol

LEGACY_TIME_FIELD = "time"
TIME_FIELD = "timestamp"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class DocumentError(ValueError):
    pass


def _decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise DocumentError(f"{field} is missing or not a number")
    try:
        number = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise DocumentError(f"{field} is not a number: {value!r}") from exc
    if not number.is_finite():
        raise DocumentError(f"{field} is not finite: {value!r}")
    return number


def _int(value: Any, field: str) -> int:
    number = _decimal(value, field)
    if number != number.to_integral_value():
        raise DocumentError(f"{field} is not a whole number: {value!r}")
    return int(number)


def to_epoch_ms(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (ts - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: Any) -> datetime:
    if isinstance(value, str) and not value.strip().lstrip("-").replace(".", "", 1).isdigit():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise DocumentError(f"trade timestamp is not epoch millis or ISO-8601: {value!r}") from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    ms = _decimal(value.strip() if isinstance(value, str) else value, "trade timestamp")
    try:
        return EPOCH + timedelta(milliseconds=int(ms))
    except (OverflowError, ValueError) as exc:
        raise DocumentError(f"trade timestamp is out of range: {value!r}") from exc


def trade_to_doc(trade: TradeRecord) -> dict[str, Any]:
    return {
        "type": trade.side,
        "symbol": trade.symbol,
        "qty": trade.qty,
        "price": str(trade.price),
        TIME_FIELD: to_epoch_ms(trade.timestamp),
    }


def trade_from_doc(doc: Any) -> TradeRecord:
    if not isinstance(doc, dict):
        raise DocumentError(f"trade record is not an object: {doc!r}")
    side = str(doc.get("type", "")).upper()
    if side not in ("BUY", "SELL"):
        raise DocumentError(f"trade type must be BUY or SELL, got {doc.get('type')!r}")
    raw_ts = doc.get(TIME_FIELD, doc.get(LEGACY_TIME_FIELD))
    if raw_ts is None:
        raise DocumentError("trade record has neither 'timestamp' nor 'time'")
    return TradeRecord(
        side=side,  # type: ignore[arg-type]
        symbol=normalize_symbol(doc.get("symbol")),
        qty=_int(doc.get("qty"), "trade qty"),
        price=_decimal(doc.get("price"), "trade price"),
        timestamp=from_epoch_ms(raw_ts),
    )


def account_to_doc(account: Account) -> dict[str, Any]:
    return {
        "balance": str(account.balance),
        "portfolio": {
            sym: {"qty": pos.qty, "avgPrice": str(pos.avg_price)} for sym, pos in account.positions.items()
        },
        "trades": [trade_to_doc(t) for t in account.trades],
        "watchlist": list(account.watchlist),
    }


def _positions_from_doc(raw: Any) -> dict[str, Position]:
    if raw is None:
        return {}
    items: list[tuple[Any, Any]]
    if isinstance(raw, dict):
        items = list(raw.items())
    elif isinstance(raw, list):
        items = [(entry.get("symbol") if isinstance(entry, dict) else None, entry) for entry in raw]
    else:
        raise DocumentError(f"portfolio must be an object, got {type(raw).__name__}")

    positions: dict[str, Position] = {}
    for key, entry in items:
        if entry is None:
            continue
        if not isinstance(entry, dict):
            raise DocumentError(f"position {key!r} is not an object")
        sym = normalize_symbol(key)
        qty = _int(entry.get("qty"), f"{sym} qty")
        if qty < 0:
            raise DocumentError(f"{sym} qty is negative")
        if qty == 0:
            # Closed positions are dropped rather than carried as zero rows.
            continue
        positions[sym] = Position(symbol=sym, qty=qty, avg_price=_decimal(entry.get("avgPrice"), f"{sym} avgPrice"))
    return positions


def _watchlist_from_doc(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    seen: list[str] = []
    for item in raw:
        sym = normalize_symbol(item) if isinstance(item, str) else ""
        if sym and sym not in seen:
            seen.append(sym)
    return tuple(seen)


def account_from_doc(doc: Any, version: int = 0) -> Account:
    if not isinstance(doc, dict):
        raise DocumentError("account document is not an object")
    balance_raw = doc.get("balance")
    balance = DEFAULT_INITIAL_BALANCE if balance_raw is None else _decimal(balance_raw, "balance")
    trades_raw = doc.get("trades") or []
    if not isinstance(trades_raw, list):
        raise DocumentError("trades must be a list")
    return Account(
        balance=balance,
        positions=_positions_from_doc(doc.get("portfolio")),
        trades=tuple(trade_from_doc(t) for t in trades_raw),
        watchlist=_watchlist_from_doc(doc.get("watchlist")),
        version=version,
    )


def has_legacy_timestamps(doc: Any) -> bool:
    trades = doc.get("trades") if isinstance(doc, dict) else None
    if not isinstance(trades, list):
        return False
    return any(isinstance(t, dict) and LEGACY_TIME_FIELD in t for t in trades)


def has_watchlist(doc: Any) -> bool:
    return isinstance(doc, dict) and isinstance(doc.get("watchlist"), list)


def dumps(doc: dict[str, Any]) -> str:
    return json.dumps(doc, ensure_ascii=True, separators=(",", ":"))


def loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DocumentError(f"account document is not valid JSON: {exc}") from exc
