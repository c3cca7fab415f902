from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

import requests

from papertrade.config import MarketDataConfig
from papertrade.errors import AdapterUnavailable
from papertrade.models import CompanyProfile, NewsArticle, PriceBar, Quote, SymbolMatch, normalize_symbol

SEARCHABLE_TYPES = ("Common Stock", "ETP")


def normalize_price(value: Any) -> Optional[float]:
    """Convert a vendor price field to float, mapping NaN, inf or junk to None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def is_valid_price(value: Any) -> bool:
    """Return True when price is a real, positive number."""
    number = normalize_price(value)
    return number is not None and number > 0


def parse_quote(symbol: str, payload: Any) -> Quote:
    """Finnhub /quote -> Quote. Finnhub answers unknown symbols with all zeros."""
    if not isinstance(payload, dict):
        raise AdapterUnavailable(f"Quote for {symbol} is not an object")
    current = normalize_price(payload.get("c"))
    if current is None or current <= 0:
        raise AdapterUnavailable(f"No current price for {symbol}")
    return Quote(
        symbol=symbol,
        current=current,
        open=normalize_price(payload.get("o")),
        high=normalize_price(payload.get("h")),
        low=normalize_price(payload.get("l")),
        previous_close=normalize_price(payload.get("pc")),
        change=normalize_price(payload.get("d")),
        change_pct=normalize_price(payload.get("dp")),
    )


def parse_aggregates(symbol: str, payload: Any) -> list[PriceBar]:
    """Polygon /v2/aggs -> daily bars, oldest first. Bars with a missing close are skipped."""
    if not isinstance(payload, dict):
        raise AdapterUnavailable(f"Price series for {symbol} is not an object")
    results = payload.get("results")
    if results is None:
        return []
    if not isinstance(results, list):
        raise AdapterUnavailable(f"Price series for {symbol} has no result list")

    bars: list[PriceBar] = []
    for row in results:
        if not isinstance(row, dict):
            continue
        close = normalize_price(row.get("c"))
        ts = normalize_price(row.get("t"))
        if close is None or ts is None:
            continue
        day = datetime.fromtimestamp(ts / 1000.0, tz=timezone.utc).date()
        bars.append(
            PriceBar(
                day=day,
                open=normalize_price(row.get("o")) or close,
                high=normalize_price(row.get("h")) or close,
                low=normalize_price(row.get("l")) or close,
                close=close,
                volume=normalize_price(row.get("v")) or 0.0,
            )
        )
    bars.sort(key=lambda b: b.day)
    return bars


def parse_profile(symbol: str, profile: Any, metrics: Any) -> CompanyProfile:
    if not isinstance(profile, dict):
        raise AdapterUnavailable(f"Profile for {symbol} is not an object")
    metric_block = metrics.get("metric") if isinstance(metrics, dict) else None
    flat: Dict[str, float] = {}
    if isinstance(metric_block, dict):
        for key, value in metric_block.items():
            number = normalize_price(value)
            if number is not None:
                flat[str(key)] = number
    return CompanyProfile(
        symbol=symbol,
        name=str(profile.get("name") or ""),
        exchange=str(profile.get("exchange") or ""),
        industry=str(profile.get("finnhubIndustry") or ""),
        currency=str(profile.get("currency") or ""),
        market_cap=normalize_price(profile.get("marketCapitalization")),
        metrics=flat,
    )


def parse_news(payload: Any, limit: int) -> list[NewsArticle]:
    if not isinstance(payload, list):
        raise AdapterUnavailable("News response is not a list")
    articles: list[NewsArticle] = []
    for item in payload:
        if not isinstance(item, dict) or not item.get("headline"):
            continue
        published = None
        stamp = normalize_price(item.get("datetime"))
        if stamp is not None:
            published = datetime.fromtimestamp(stamp, tz=timezone.utc)
        articles.append(
            NewsArticle(
                headline=str(item["headline"]),
                source=str(item.get("source") or ""),
                url=str(item.get("url") or ""),
                summary=str(item.get("summary") or ""),
                published=published,
            )
        )
        if len(articles) >= limit:
            break
    return articles


class MarketDataClient:
    """Quotes, daily bars, fundamentals and news over REST.

    Every failure (transport, HTTP status, payload shape) surfaces as
    AdapterUnavailable; callers decide how to degrade.
    """

    def __init__(self, cfg: MarketDataConfig, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.session = session or requests.Session()
        self._log = logging.getLogger("market_data")

    def _get(self, url: str, params: Dict[str, Any], *, what: str) -> Any:
        try:
            resp = self.session.get(url, params=params, timeout=self.cfg.timeout_seconds)
        except requests.RequestException as exc:
            self._log.warning("market_data_request_failed", extra={"what": what, "error": str(exc)})
            raise AdapterUnavailable(f"{what} request failed: {exc}") from exc
        if resp.status_code != 200:
            self._log.warning("market_data_bad_status", extra={"what": what, "status": resp.status_code})
            raise AdapterUnavailable(f"{what} returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise AdapterUnavailable(f"{what} returned invalid JSON") from exc

    def _finnhub(self, path: str, params: Dict[str, Any], *, what: str) -> Any:
        return self._get(
            f"{self.cfg.finnhub_url.rstrip('/')}{path}",
            {**params, "token": self.cfg.finnhub_api_key},
            what=what,
        )

    def get_quote(self, symbol: str) -> Quote:
        sym = normalize_symbol(symbol)
        return parse_quote(sym, self._finnhub("/quote", {"symbol": sym}, what=f"quote {sym}"))

    def get_daily_series(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        sym = normalize_symbol(symbol)
        url = f"{self.cfg.polygon_url.rstrip('/')}/v2/aggs/ticker/{sym}/range/1/day/{start.isoformat()}/{end.isoformat()}"
        payload = self._get(
            url,
            {"adjusted": "true", "sort": "asc", "limit": 50000, "apiKey": self.cfg.polygon_api_key},
            what=f"daily series {sym}",
        )
        return parse_aggregates(sym, payload)

    def get_fundamentals(self, symbol: str) -> CompanyProfile:
        sym = normalize_symbol(symbol)
        profile = self._finnhub("/stock/profile2", {"symbol": sym}, what=f"profile {sym}")
        metrics = self._finnhub("/stock/metric", {"symbol": sym, "metric": "all"}, what=f"metrics {sym}")
        return parse_profile(sym, profile, metrics)

    def search_symbols(self, query: str) -> list[SymbolMatch]:
        if not query or not query.strip():
            return []
        payload = self._finnhub("/search", {"q": query.strip()}, what="symbol search")
        results = payload.get("result") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise AdapterUnavailable("Symbol search returned no result list")
        return [
            SymbolMatch(symbol=str(r.get("symbol", "")), description=str(r.get("description", "")), type=str(r.get("type", "")))
            for r in results
            if isinstance(r, dict) and r.get("type") in SEARCHABLE_TYPES
        ]

    def get_company_news(self, symbol: str, days: int = 7, limit: int = 10, *, today: Optional[date] = None) -> list[NewsArticle]:
        sym = normalize_symbol(symbol)
        end = today or datetime.now(timezone.utc).date()
        start = end - timedelta(days=days)
        payload = self._finnhub(
            "/company-news",
            {"symbol": sym, "from": start.isoformat(), "to": end.isoformat()},
            what=f"news {sym}",
        )
        return parse_news(payload, limit)
