"""Unified logger for the whole project."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from compatgate.config.settings import settings


LOG_FILE_NAME = "compatgate.log"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 10
_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _normalize_level(raw: str) -> int:
    candidate = str(raw or "INFO").strip().upper()
    level = logging.getLevelName(candidate)
    return level if isinstance(level, int) else logging.INFO


def _file_handler(log_dir: str, formatter: logging.Formatter) -> logging.Handler | None:
    if not log_dir:
        return None
    try:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            directory / LOG_FILE_NAME,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        # 目录不可写（只读挂载等）时退回只输出 stderr
        return None
    handler.setFormatter(formatter)
    return handler


def _build_logger() -> logging.Logger:
    configured_logger = logging.getLogger("compatgate")
    if configured_logger.handlers:
        return configured_logger

    configured_logger.setLevel(_normalize_level(settings.log_level))
    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configured_logger.addHandler(stream_handler)

    file_handler = _file_handler(settings.log_dir, formatter)
    if file_handler is not None:
        configured_logger.addHandler(file_handler)

    configured_logger.propagate = False
    return configured_logger


logger = _build_logger()


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under compatgate namespace."""

    return logger.getChild(name)
