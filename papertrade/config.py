from __future__ import annotations

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from papertrade.models import DEFAULT_INITIAL_BALANCE


class LogConfig(BaseModel):
    level: str = "INFO"
    json_logs: bool = Field(default=True, alias="json")
    file: str = "run/papertrade.log"

    model_config = ConfigDict(populate_by_name=True)


class StorageConfig(BaseModel):
    backend: Literal["sqlite", "memory"] = "sqlite"
    sqlite_path: str = "run/papertrade.sqlite"


class AccountConfig(BaseModel):
    initial_balance: Decimal = Field(default=DEFAULT_INITIAL_BALANCE, ge=0)
    max_write_retries: int = Field(default=5, ge=1)


class MarketDataConfig(BaseModel):
    finnhub_url: str = "https://finnhub.io/api/v1"
    finnhub_api_key: str = ""
    polygon_url: str = "https://api.polygon.io"
    polygon_api_key: str = ""
    timeout_seconds: float = 10.0


class ForecastConfig(BaseModel):
    enabled: bool = True
    base_url: str = "https://api.groq.com/openai/v1"
    api_key: str = ""
    model: str = "llama-3.1-8b-instant"
    temperature: float = 0.3
    sentiment_temperature: float = 0.2
    timeout_seconds: float = 20.0


# Secrets stay out of YAML: (section, field) -> env var.
_ENV_OVERRIDES = {
    ("market_data", "finnhub_api_key"): "PAPERTRADE_FINNHUB_API_KEY",
    ("market_data", "polygon_api_key"): "PAPERTRADE_POLYGON_API_KEY",
    ("forecast", "api_key"): "PAPERTRADE_FORECAST_API_KEY",
}


class AppConfig(BaseModel):
    log: LogConfig = Field(default_factory=LogConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    account: AccountConfig = Field(default_factory=AccountConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    forecast: ForecastConfig = Field(default_factory=ForecastConfig)

    @model_validator(mode="before")
    @classmethod
    def _apply_env_secrets(cls, data: Any) -> Any:
        if data is None:
            data = {}
        if not isinstance(data, dict):
            return data

        data = dict(data)
        applied: list[str] = []
        for (section, key), env_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if not value:
                continue
            section_data = data.get(section)
            section_data = dict(section_data) if isinstance(section_data, dict) else {}
            section_data[key] = value
            data[section] = section_data
            applied.append(env_name)

        if applied:
            logging.getLogger(__name__).info("Config secrets taken from environment: %s", ", ".join(applied))
        return data


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    return AppConfig.model_validate(data)
