from __future__ import annotations

import csv
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import NoReturn, Optional, Union

import typer

from papertrade import ledger
from papertrade.config import AppConfig, load_config
from papertrade.errors import AdapterUnavailable, LedgerError, PaperTradeError
from papertrade.forecast import ForecastClient
from papertrade.logging_setup import setup_logging
from papertrade.market_data import MarketDataClient
from papertrade.models import Account, normalize_symbol
from papertrade.persistence import AccountStore, MemoryAccountStore, SqliteAccountStore
from papertrade.trading import TradingService
from papertrade.watchlist import WatchlistService

app = typer.Typer(add_completion=False)


def _money(value: Decimal) -> str:
    return f"{value:,.2f}"


def _make_store(cfg: AppConfig) -> AccountStore:
    if cfg.storage.backend == "memory":
        return MemoryAccountStore()
    return SqliteAccountStore(cfg.storage.sqlite_path)


def _service_kwargs(cfg: AppConfig) -> dict:
    return {"initial_balance": cfg.account.initial_balance, "max_write_retries": cfg.account.max_write_retries}


def _load(config: str) -> AppConfig:
    cfg = load_config(config)
    setup_logging(cfg.log)
    return cfg


def _fail(message: str) -> NoReturn:
    typer.echo(message)
    raise typer.Exit(code=1)


def _print_account(acct: Account) -> None:
    typer.echo(f"balance={_money(acct.balance)} version={acct.version}")
    if not acct.positions:
        typer.echo("no positions")
    for sym in sorted(acct.positions):
        pos = acct.positions[sym]
        typer.echo(f"  {sym} qty={pos.qty} avg_price={_money(pos.avg_price)}")


@app.command()
def account(config: str = typer.Option(..., "--config", "-c"), uid: str = typer.Option(..., "--uid", "-u", help="Authenticated user id")) -> None:
    """Show cash balance and open positions."""
    cfg = _load(config)
    store = _make_store(cfg)
    try:
        _print_account(TradingService(store, **_service_kwargs(cfg)).get_account(uid))
    except PaperTradeError as exc:
        _fail(f"Account unavailable: {exc}")
    finally:
        store.close()


def _trade(side: str, config: str, uid: str, symbol: str, qty: int, price: Optional[float]) -> None:
    cfg = _load(config)
    log = logging.getLogger("cli")
    sym = normalize_symbol(symbol)

    exec_price: Union[float, Decimal, None] = price
    if exec_price is None:
        try:
            exec_price = MarketDataClient(cfg.market_data).get_quote(sym).current
        except AdapterUnavailable as exc:
            log.error("trade_price_unavailable", extra={"symbol": sym, "error": str(exc)})
            _fail(f"Trade failed: no price for {sym} ({exc})")

    store = _make_store(cfg)
    try:
        svc = TradingService(store, **_service_kwargs(cfg))
        result = svc.buy(uid, sym, qty, exec_price) if side == "BUY" else svc.sell(uid, sym, qty, exec_price)
    except PaperTradeError as exc:
        _fail(f"Trade failed: {exc}")
    finally:
        store.close()

    if isinstance(result, LedgerError):
        _fail(f"Trade rejected: {result}")
    trade = result.trades[-1]
    typer.echo(f"{side} {trade.qty} {trade.symbol} @ {_money(trade.price)}")
    pos = result.positions.get(trade.symbol)
    if pos:
        typer.echo(f"position {trade.symbol} qty={pos.qty} avg_price={_money(pos.avg_price)}")
    else:
        typer.echo(f"position {trade.symbol} closed")
    typer.echo(f"balance={_money(result.balance)}")


@app.command()
def buy(
    symbol: str = typer.Argument(...),
    qty: int = typer.Argument(...),
    price: Optional[float] = typer.Option(None, "--price", "-p", help="Execution price; defaults to the live quote"),
    config: str = typer.Option(..., "--config", "-c"),
    uid: str = typer.Option(..., "--uid", "-u", help="Authenticated user id"),
) -> None:
    """Buy shares with paper cash."""
    _trade("BUY", config, uid, symbol, qty, price)


@app.command()
def sell(
    symbol: str = typer.Argument(...),
    qty: int = typer.Argument(...),
    price: Optional[float] = typer.Option(None, "--price", "-p", help="Execution price; defaults to the live quote"),
    config: str = typer.Option(..., "--config", "-c"),
    uid: str = typer.Option(..., "--uid", "-u", help="Authenticated user id"),
) -> None:
    """Sell held shares back to cash."""
    _trade("SELL", config, uid, symbol, qty, price)


@app.command()
def trades(config: str = typer.Option(..., "--config", "-c"), uid: str = typer.Option(..., "--uid", "-u", help="Authenticated user id")) -> None:
    """List trade history, oldest first."""
    cfg = _load(config)
    store = _make_store(cfg)
    try:
        history = TradingService(store, **_service_kwargs(cfg)).trades(uid)
    except PaperTradeError as exc:
        _fail(f"Account unavailable: {exc}")
    finally:
        store.close()
    if not history:
        typer.echo("no trades")
    for t in history:
        typer.echo(f"{t.timestamp.isoformat()} {t.side} {t.symbol} qty={t.qty} price={_money(t.price)}")


@app.command()
def portfolio(config: str = typer.Option(..., "--config", "-c"), uid: str = typer.Option(..., "--uid", "-u", help="Authenticated user id")) -> None:
    """Value positions at live quotes; symbols without a quote are shown at cost."""
    cfg = _load(config)
    store = _make_store(cfg)
    try:
        acct = TradingService(store, **_service_kwargs(cfg)).get_account(uid)
    except PaperTradeError as exc:
        _fail(f"Account unavailable: {exc}")
    finally:
        store.close()

    market = MarketDataClient(cfg.market_data)
    prices: dict[str, float] = {}
    for sym in acct.positions:
        try:
            prices[sym] = market.get_quote(sym).current
        except AdapterUnavailable:
            logging.getLogger("cli").warning("quote_unavailable", extra={"symbol": sym})

    snap = ledger.valuation(acct, prices)
    for row in snap.positions:
        last = _money(row.last_price) if row.last_price is not None else "n/a"
        typer.echo(
            f"  {row.symbol} qty={row.qty} avg={_money(row.avg_price)} last={last} "
            f"value={_money(row.market_value)} unrealized={_money(row.unrealized)}"
        )
    typer.echo(
        f"cash={_money(snap.balance)} holdings={_money(snap.holdings_value)} "
        f"equity={_money(snap.equity)} unrealized={_money(snap.unrealized)}"
    )


@app.command()
def watchlist(config: str = typer.Option(..., "--config", "-c"), uid: str = typer.Option(..., "--uid", "-u", help="Authenticated user id")) -> None:
    """Show the watchlist."""
    cfg = _load(config)
    store = _make_store(cfg)
    try:
        symbols = WatchlistService(store, **_service_kwargs(cfg)).get(uid)
    except PaperTradeError as exc:
        _fail(f"Watchlist unavailable: {exc}")
    finally:
        store.close()
    typer.echo(", ".join(symbols) if symbols else "watchlist empty")


@app.command()
def watch(symbol: str = typer.Argument(...), config: str = typer.Option(..., "--config", "-c"), uid: str = typer.Option(..., "--uid", "-u", help="Authenticated user id")) -> None:
    """Add a symbol to the watchlist."""
    cfg = _load(config)
    store = _make_store(cfg)
    try:
        symbols = WatchlistService(store, **_service_kwargs(cfg)).add(uid, symbol)
    except PaperTradeError as exc:
        _fail(f"Watchlist update failed: {exc}")
    finally:
        store.close()
    typer.echo(", ".join(symbols))


@app.command()
def unwatch(symbol: str = typer.Argument(...), config: str = typer.Option(..., "--config", "-c"), uid: str = typer.Option(..., "--uid", "-u", help="Authenticated user id")) -> None:
    """Remove a symbol from the watchlist."""
    cfg = _load(config)
    store = _make_store(cfg)
    try:
        symbols = WatchlistService(store, **_service_kwargs(cfg)).remove(uid, symbol)
    except PaperTradeError as exc:
        _fail(f"Watchlist update failed: {exc}")
    finally:
        store.close()
    typer.echo(", ".join(symbols) if symbols else "watchlist empty")


@app.command()
def quote(
    symbol: str = typer.Argument(...),
    config: str = typer.Option(..., "--config", "-c"),
    forecast: bool = typer.Option(False, "--forecast", help="Add advisory AI forecast and news sentiment"),
    history_days: int = typer.Option(30, "--history-days"),
) -> None:
    """Show a quote; forecast and sentiment degrade to n/a when unavailable."""
    cfg = _load(config)
    log = logging.getLogger("cli")
    sym = normalize_symbol(symbol)
    market = MarketDataClient(cfg.market_data)

    try:
        q = market.get_quote(sym)
    except AdapterUnavailable as exc:
        _fail(f"Quote unavailable for {sym}: {exc}")

    pct = f"{q.change_pct:+.2f}%" if q.change_pct is not None else "n/a"
    typer.echo(f"{sym} last={q.current:.2f} prev_close={q.previous_close} change={q.change} ({pct})")
    if not forecast:
        return

    profile = None
    history = []
    news = []
    try:
        profile = market.get_fundamentals(sym)
    except AdapterUnavailable as exc:
        log.warning("fundamentals_unavailable", extra={"symbol": sym, "error": str(exc)})
    today = datetime.now(timezone.utc).date()
    try:
        history = market.get_daily_series(sym, today - timedelta(days=history_days), today)
    except AdapterUnavailable as exc:
        log.warning("history_unavailable", extra={"symbol": sym, "error": str(exc)})
    try:
        news = market.get_company_news(sym)
    except AdapterUnavailable as exc:
        log.warning("news_unavailable", extra={"symbol": sym, "error": str(exc)})

    oracle = ForecastClient(cfg.forecast)
    fc = oracle.predict(sym, q, profile, history)
    if fc is None:
        typer.echo("forecast: n/a")
    else:
        typer.echo(f"forecast: {fc.trend} predicted={fc.predicted:.2f} confidence={fc.confidence:.0%}")
    st = oracle.analyze_sentiment(sym, news)
    if st is None:
        typer.echo("sentiment: n/a")
    else:
        typer.echo(f"sentiment: {st.impact} score={st.sentiment:.2f} risk={st.risk} - {st.summary}")


@app.command()
def export(config: str = typer.Option(..., "--config", "-c"), uid: str = typer.Option(..., "--uid", "-u", help="Authenticated user id"), outdir: str = typer.Option("run/exports", "--outdir")) -> None:
    """Write the trade history to CSV."""
    cfg = _load(config)
    store = _make_store(cfg)
    try:
        history = TradingService(store, **_service_kwargs(cfg)).trades(uid)
    except PaperTradeError as exc:
        _fail(f"Account unavailable: {exc}")
    finally:
        store.close()

    out = Path(outdir)
    out.mkdir(parents=True, exist_ok=True)
    ts_tag = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    path = out / f"{ts_tag}_{uid}_trades.csv"
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["timestamp", "type", "symbol", "qty", "price"])
        for t in history:
            writer.writerow([t.timestamp.isoformat(), t.side, t.symbol, t.qty, str(t.price)])
    typer.echo(f"exported {len(history)} trades to {path}")


@app.command()
def migrate(config: str = typer.Option(..., "--config", "-c")) -> None:
    """Rename legacy trade 'time' fields to 'timestamp' in every stored account."""
    cfg = _load(config)
    if cfg.storage.backend != "sqlite":
        _fail("migrate requires storage.backend=sqlite")
    store = SqliteAccountStore(cfg.storage.sqlite_path)
    try:
        count = store.migrate_trade_timestamps()
    except PaperTradeError as exc:
        _fail(f"Migration failed: {exc}")
    finally:
        store.close()
    typer.echo(f"migrated {count} accounts")


if __name__ == "__main__":
    app()
