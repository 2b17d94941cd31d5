"""Centralized logging configuration for the solution portal."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Third-party loggers that flood the portal log at INFO.
NOISY_LOGGERS = ("uvicorn.access", "httpx")


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: int | str = logging.INFO,
    *,
    handlers: Iterable[logging.Handler] | None = None,
) -> Logger:
    """Configure the root logger and quieten chatty dependencies.

    Handlers already attached to the root logger are not attached twice, so
    the CLI can call this for every command without duplicating output.
    """

    logger = logging.getLogger()
    logger.setLevel(_coerce_level(level))

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        handlers = [stream_handler]

    for handler in handlers:
        if handler not in logger.handlers:
            logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the portal log file."""

    return storage_root / "portal.log"


__all__ = ["configure_logging", "get_log_file_path", "DEFAULT_LOG_FORMAT", "NOISY_LOGGERS"]
