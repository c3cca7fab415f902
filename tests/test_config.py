from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from papertrade.config import AppConfig, load_config

SAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config" / "paper.example.yaml"


def test_defaults_present() -> None:
    cfg = AppConfig()
    assert cfg.account.initial_balance == Decimal("100000")
    assert cfg.account.max_write_retries == 5
    assert cfg.storage.backend == "sqlite"
    assert cfg.log.json_logs is True
    assert cfg.forecast.model == "llama-3.1-8b-instant"


def test_sample_config_parses(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PAPERTRADE_FINNHUB_API_KEY", "PAPERTRADE_POLYGON_API_KEY", "PAPERTRADE_FORECAST_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    if not SAMPLE_CONFIG.exists():
        pytest.skip("Sample config file is missing")

    cfg = load_config(SAMPLE_CONFIG)

    assert isinstance(cfg, AppConfig)
    assert cfg.storage.sqlite_path == "run/papertrade.sqlite"
    assert cfg.market_data.finnhub_api_key == ""


def test_json_alias_and_overrides() -> None:
    cfg = AppConfig.model_validate(
        {
            "log": {"json": False, "level": "DEBUG"},
            "storage": {"backend": "memory"},
            "account": {"initial_balance": "2500.50", "max_write_retries": 2},
        }
    )
    assert cfg.log.json_logs is False
    assert cfg.storage.backend == "memory"
    assert cfg.account.initial_balance == Decimal("2500.50")
    assert cfg.account.max_write_retries == 2


def test_api_keys_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PAPERTRADE_FINNHUB_API_KEY", "env-finnhub")
    monkeypatch.setenv("PAPERTRADE_FORECAST_API_KEY", "env-groq")
    monkeypatch.delenv("PAPERTRADE_POLYGON_API_KEY", raising=False)

    cfg = AppConfig.model_validate({"market_data": {"finnhub_api_key": "yaml-key", "polygon_api_key": "yaml-poly"}})

    assert cfg.market_data.finnhub_api_key == "env-finnhub"
    assert cfg.market_data.polygon_api_key == "yaml-poly"
    assert cfg.forecast.api_key == "env-groq"


def test_empty_yaml_is_all_defaults(tmp_path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    cfg = load_config(path)
    assert cfg.account.initial_balance == Decimal("100000")


def test_invalid_values_rejected() -> None:
    with pytest.raises(ValueError):
        AppConfig.model_validate({"account": {"initial_balance": -1}})
    with pytest.raises(ValueError):
        AppConfig.model_validate({"storage": {"backend": "firestore"}})
