from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER_NAME = "musicplayer"

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def _env_truthy(name: str, *, default: bool = False) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def resolve_log_path() -> Path:
    """Return the active log file location.

    Defaults to musicplayer.log in the working directory. Override with
    MUSICPLAYER_LOG_PATH.
    """
    raw = (os.environ.get("MUSICPLAYER_LOG_PATH") or "").strip()
    if raw:
        return Path(raw)
    return Path.cwd() / "musicplayer.log"


def setup_logging() -> logging.Logger:
    """Attach a rotating file handler to the package root logger (once)."""
    global _configured
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if _configured:
        return logger

    level = logging.DEBUG if _env_truthy("MUSICPLAYER_DEBUG") else logging.INFO
    logger.setLevel(level)

    log_path = resolve_log_path()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    except OSError:
        # Read-only working directory: keep running without a log file.
        handler = logging.NullHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)

    # Console output belongs to the command surface.
    logger.propagate = False
    _configured = True
    return logger


def get_logger(component: str) -> logging.Logger:
    """Named child logger, e.g. get_logger("sink") -> musicplayer.sink."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
