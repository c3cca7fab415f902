"""Advisory price forecasts and news sentiment from an LLM.

The model is asked for bare JSON but routinely wraps it in markdown fences,
adds prose, or drifts from the schema. Every response goes through
``parse_forecast`` / ``parse_sentiment``, which return one of ``Parsed``,
``ParseError`` or ``SchemaViolation``. The client turns anything but
``Parsed`` into ``None``: these signals never gate a trade and never raise.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, Literal, Optional, Sequence, TypeVar, Union

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from papertrade.config import ForecastConfig
from papertrade.models import CompanyProfile, Forecast, NewsArticle, PriceBar, Quote, Sentiment

T = TypeVar("T")

HISTORY_POINTS = 10
SENTIMENT_HEADLINES = 5

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class ParseError:
    reason: str
    raw: str


@dataclass(frozen=True)
class SchemaViolation:
    reason: str
    payload: Any


ParseResult = Union[Parsed[T], ParseError, SchemaViolation]


class _ForecastPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    predicted: float = Field(allow_inf_nan=False)
    confidence: float = Field(ge=0.0, le=1.0)
    trend: Literal["UP", "DOWN", "FLAT"]


class _SentimentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sentiment: float = Field(ge=0.0, le=1.0)
    impact: Literal["positive", "negative", "neutral"]
    risk: Literal["low", "medium", "high"]
    summary: str


def _strip_fences(raw: str) -> str:
    return _FENCE.sub("", raw).strip()


def _load_json_object(raw: Optional[str]) -> Union[dict, ParseError]:
    if raw is None or not str(raw).strip():
        return ParseError("empty response", raw or "")
    cleaned = _strip_fences(str(raw))
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        # Tolerate chatter around a single JSON object.
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            return ParseError(f"not JSON: {exc.msg}", str(raw))
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as inner:
            return ParseError(f"not JSON: {inner.msg}", str(raw))
    if not isinstance(data, dict):
        return ParseError(f"expected a JSON object, got {type(data).__name__}", str(raw))
    return data


def _violation(exc: ValidationError, payload: Any) -> SchemaViolation:
    first = exc.errors()[0]
    where = ".".join(str(p) for p in first.get("loc", ())) or "<root>"
    return SchemaViolation(f"{where}: {first.get('msg', 'invalid')}", payload)


def parse_forecast(raw: Optional[str]) -> ParseResult[Forecast]:
    data = _load_json_object(raw)
    if isinstance(data, ParseError):
        return data
    if isinstance(data.get("trend"), str):
        data = {**data, "trend": data["trend"].strip().upper()}
    try:
        payload = _ForecastPayload.model_validate(data)
    except ValidationError as exc:
        return _violation(exc, data)
    return Parsed(Forecast(predicted=payload.predicted, confidence=payload.confidence, trend=payload.trend))


def parse_sentiment(raw: Optional[str]) -> ParseResult[Sentiment]:
    data = _load_json_object(raw)
    if isinstance(data, ParseError):
        return data
    try:
        payload = _SentimentPayload.model_validate(data)
    except ValidationError as exc:
        return _violation(exc, data)
    return Parsed(
        Sentiment(sentiment=payload.sentiment, impact=payload.impact, risk=payload.risk, summary=payload.summary)
    )


def recent_closes(history: Optional[Sequence[PriceBar]], n: int = HISTORY_POINTS) -> list[float]:
    if not history:
        return []
    return [bar.close for bar in list(history)[-n:]]


class ForecastClient:
    def __init__(self, cfg: ForecastConfig, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.session = session or requests.Session()
        self._log = logging.getLogger("forecast")

    @property
    def available(self) -> bool:
        return self.cfg.enabled and bool(self.cfg.api_key)

    def _complete(self, system: str, user: str, temperature: float, *, what: str) -> Optional[str]:
        body = {
            "model": self.cfg.model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        try:
            resp = self.session.post(
                f"{self.cfg.base_url.rstrip('/')}/chat/completions",
                headers={"Authorization": f"Bearer {self.cfg.api_key}", "Content-Type": "application/json"},
                json=body,
                timeout=self.cfg.timeout_seconds,
            )
        except requests.RequestException as exc:
            self._log.warning("forecast_request_failed", extra={"what": what, "error": str(exc)})
            return None
        if resp.status_code != 200:
            self._log.warning("forecast_bad_status", extra={"what": what, "status": resp.status_code})
            return None
        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            self._log.warning("forecast_unexpected_response", extra={"what": what, "body": resp.text[:500]})
            return None
        return content if isinstance(content, str) else None

    def _unwrap(self, result: ParseResult[T], *, what: str, symbol: str) -> Optional[T]:
        if isinstance(result, Parsed):
            return result.value
        if isinstance(result, ParseError):
            self._log.warning("forecast_parse_error", extra={"what": what, "symbol": symbol, "reason": result.reason, "raw": result.raw[:500]})
        else:
            self._log.warning("forecast_schema_violation", extra={"what": what, "symbol": symbol, "reason": result.reason})
        return None

    def predict(
        self,
        symbol: str,
        quote: Optional[Quote],
        fundamentals: Optional[CompanyProfile] = None,
        history: Optional[Sequence[PriceBar]] = None,
    ) -> Optional[Forecast]:
        """Next-day price guess. None when unavailable, disabled or unparseable."""
        if not symbol or quote is None:
            self._log.info("forecast_skipped_missing_input", extra={"symbol": symbol})
            return None
        if not self.available:
            return None

        change_pct = quote.change_pct if quote.change_pct is not None else 0.0
        fundamentals_json = json.dumps(
            {
                "name": fundamentals.name,
                "industry": fundamentals.industry,
                "marketCap": fundamentals.market_cap,
                **fundamentals.metrics,
            }
            if fundamentals
            else {}
        )
        user = "\n".join(
            [
                f"Predict the next-day stock price for {symbol}.",
                "Use the following data:",
                "",
                f"Latest Price: {quote.current}",
                f"Change %: {change_pct}",
                f"Fundamentals: {fundamentals_json}",
                f"Last {HISTORY_POINTS} prices: {json.dumps(recent_closes(history))}",
                "",
                "Return ONLY this JSON (no extra text):",
                '{"predicted": number, "confidence": number between 0 and 1, "trend": "UP" | "DOWN" | "FLAT"}',
            ]
        )
        raw = self._complete(
            "You are a financial forecasting AI. Respond ONLY with valid JSON.",
            user,
            self.cfg.temperature,
            what="predict",
        )
        if raw is None:
            return None
        return self._unwrap(parse_forecast(raw), what="predict", symbol=symbol)

    def analyze_sentiment(self, symbol: str, articles: Optional[Sequence[NewsArticle]]) -> Optional[Sentiment]:
        """Score the latest headlines. None when there is nothing to score or the model misbehaves."""
        headlines = [a.headline for a in (articles or [])[:SENTIMENT_HEADLINES] if a.headline]
        if not symbol or not headlines:
            return None
        if not self.available:
            return None

        system = "\n".join(
            [
                "You are a strict JSON generator.",
                "You MUST answer ONLY valid JSON. NO explanation. NO natural text. NO comments.",
                "If data is missing, estimate based on tone of headlines.",
                "JSON schema must be exactly:",
                '{"sentiment": number between 0 and 1, "impact": "positive" | "negative" | "neutral", '
                '"risk": "low" | "medium" | "high", "summary": "string"}',
            ]
        )
        user = f"Analyze these headlines for {symbol} and score sentiment:\n\n{json.dumps(headlines)}"
        raw = self._complete(system, user, self.cfg.sentiment_temperature, what="sentiment")
        if raw is None:
            return None
        return self._unwrap(parse_sentiment(raw), what="sentiment", symbol=symbol)
