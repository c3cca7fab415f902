from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from papertrade.config import LogConfig

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _formatter(cfg: LogConfig) -> logging.Formatter:
    if cfg.json_logs:
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "ts", "levelname": "level", "name": "logger"},
        )
    return logging.Formatter(_PLAIN_FORMAT)


def setup_logging(cfg: LogConfig, *, console: bool = True) -> None:
    """Configure the root logger: rotating file (when ``cfg.file`` is set) plus stderr."""
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Repeated CLI invocations in one process (tests) must not stack handlers.
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    formatter = _formatter(cfg)

    if cfg.file:
        Path(cfg.file).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(cfg.file, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if console:
        stream = logging.StreamHandler()
        stream.setLevel(level)
        stream.setFormatter(formatter)
        root.addHandler(stream)

    # requests/urllib3 debug output drowns the event logs
    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))
