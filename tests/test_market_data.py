from __future__ import annotations

from datetime import date

import pytest
import requests

from papertrade.config import MarketDataConfig
from papertrade.errors import AdapterUnavailable
from papertrade.market_data import MarketDataClient, is_valid_price, normalize_price, parse_quote


class _FakeResponse:
    def __init__(self, payload, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeSession:
    def __init__(self, routes) -> None:
        self.routes = routes
        self.calls: list[tuple[str, dict]] = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        for suffix, response in self.routes.items():
            if url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        return _FakeResponse({}, status_code=404)


def _client(routes) -> tuple[MarketDataClient, _FakeSession]:
    session = _FakeSession(routes)
    cfg = MarketDataConfig(finnhub_api_key="fk", polygon_api_key="pk")
    return MarketDataClient(cfg, session=session), session


def test_normalize_price_maps_nan_to_none() -> None:
    assert normalize_price(float("nan")) is None
    assert normalize_price(None) is None
    assert normalize_price("junk") is None
    assert normalize_price(101.5) == 101.5
    assert normalize_price("7") == 7.0


def test_is_valid_price_rejects_nan_none_and_zero() -> None:
    assert not is_valid_price(float("nan"))
    assert not is_valid_price(None)
    assert not is_valid_price(0.0)
    assert is_valid_price(0.01)


def test_get_quote_maps_fields_and_sends_token() -> None:
    client, session = _client(
        {"/quote": _FakeResponse({"c": 189.5, "o": 187.0, "h": 190.0, "l": 186.2, "pc": 188.0, "d": 1.5, "dp": 0.7979})}
    )
    q = client.get_quote(" aapl ")
    assert q.symbol == "AAPL"
    assert q.current == 189.5
    assert q.previous_close == 188.0
    assert q.change_pct == pytest.approx(0.7979)
    url, params = session.calls[0]
    assert url == "https://finnhub.io/api/v1/quote"
    assert params == {"symbol": "AAPL", "token": "fk"}


def test_unknown_symbol_quote_is_unavailable() -> None:
    with pytest.raises(AdapterUnavailable):
        parse_quote("NOPE", {"c": 0, "d": None, "dp": None, "h": 0, "l": 0, "o": 0, "pc": 0})
    with pytest.raises(AdapterUnavailable):
        parse_quote("NOPE", ["not", "a", "dict"])


def test_http_and_transport_failures_raise_adapter_unavailable() -> None:
    client, _ = _client({"/quote": _FakeResponse({"error": "limit"}, status_code=429)})
    with pytest.raises(AdapterUnavailable):
        client.get_quote("AAPL")

    client, _ = _client({"/quote": requests.ConnectionError("offline")})
    with pytest.raises(AdapterUnavailable):
        client.get_quote("AAPL")

    client, _ = _client({"/quote": _FakeResponse(ValueError("bad json"))})
    with pytest.raises(AdapterUnavailable):
        client.get_quote("AAPL")


def test_daily_series_sorted_and_skips_bad_rows() -> None:
    payload = {
        "results": [
            {"t": 1704240000000, "o": 2, "h": 3, "l": 1, "c": 2.5, "v": 100},
            {"t": 1704153600000, "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 50},
            {"t": 1704326400000, "o": 1, "h": 2, "l": 0.5, "c": None, "v": 50},
        ]
    }
    client, session = _client({"/range/1/day/2024-01-01/2024-01-05": _FakeResponse(payload)})
    bars = client.get_daily_series("spy", date(2024, 1, 1), date(2024, 1, 5))
    assert [b.day for b in bars] == [date(2024, 1, 2), date(2024, 1, 3)]
    assert bars[-1].close == 2.5
    url, params = session.calls[0]
    assert "/v2/aggs/ticker/SPY/" in url
    assert params["apiKey"] == "pk"


def test_daily_series_without_results_is_empty() -> None:
    client, _ = _client({"/range/1/day/2024-01-01/2024-01-05": _FakeResponse({"resultsCount": 0})})
    assert client.get_daily_series("SPY", date(2024, 1, 1), date(2024, 1, 5)) == []


def test_fundamentals_merge_profile_and_metrics() -> None:
    client, _ = _client(
        {
            "/stock/profile2": _FakeResponse({"name": "Apple Inc", "exchange": "NASDAQ", "finnhubIndustry": "Technology", "marketCapitalization": 2900000}),
            "/stock/metric": _FakeResponse({"metric": {"peTTM": 29.1, "52WeekHigh": 199.6, "note": "n/a"}}),
        }
    )
    profile = client.get_fundamentals("AAPL")
    assert profile.name == "Apple Inc"
    assert profile.industry == "Technology"
    assert profile.market_cap == 2900000
    assert profile.metrics == {"peTTM": 29.1, "52WeekHigh": 199.6}


def test_search_keeps_stocks_and_etps_only() -> None:
    client, _ = _client(
        {
            "/search": _FakeResponse(
                {
                    "result": [
                        {"symbol": "AAPL", "description": "APPLE INC", "type": "Common Stock"},
                        {"symbol": "AAPL.MX", "description": "APPLE INC", "type": "Crypto"},
                        {"symbol": "QQQ", "description": "INVESCO QQQ", "type": "ETP"},
                    ]
                }
            )
        }
    )
    assert [m.symbol for m in client.search_symbols("apple")] == ["AAPL", "QQQ"]
    assert client.search_symbols("   ") == []


def test_company_news_window_and_limit() -> None:
    articles = [{"headline": f"h{i}", "source": "wire", "datetime": 1704153600} for i in range(15)]
    articles.insert(0, {"headline": ""})
    client, session = _client({"/company-news": _FakeResponse(articles)})

    news = client.get_company_news("aapl", today=date(2024, 1, 8))

    assert len(news) == 10
    assert news[0].headline == "h0"
    _, params = session.calls[0]
    assert params["from"] == "2024-01-01"
    assert params["to"] == "2024-01-08"
