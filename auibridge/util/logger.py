"""Unified logger for the whole project."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path


LOGGER_NAME = "auibridge"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 10

_FORMATTER = logging.Formatter(
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _normalize_level(raw: str) -> int:
    candidate = str(raw or "INFO").strip().upper()
    return {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }.get(candidate, logging.INFO)


def _build_logger() -> logging.Logger:
    configured_logger = logging.getLogger(LOGGER_NAME)
    if configured_logger.handlers:
        return configured_logger

    configured_logger.setLevel(logging.INFO)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(_FORMATTER)
    configured_logger.addHandler(stream_handler)
    configured_logger.propagate = False
    return configured_logger


def configure_logger(level: str, log_file: str = "") -> logging.Logger:
    """Apply level and optional rotating file output; safe to call more than once."""

    resolved_level = _normalize_level(level)
    logger.setLevel(resolved_level)
    for handler in logger.handlers:
        handler.setLevel(resolved_level)

    if not log_file:
        return logger
    target = Path(log_file)
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == target.resolve():
            return logger
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        rotating_handler = RotatingFileHandler(
            target,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        # 无法写文件时仅使用 stderr
        logger.warning("log file disabled path=%s error=%s", log_file, exc)
        return logger
    rotating_handler.setLevel(resolved_level)
    rotating_handler.setFormatter(_FORMATTER)
    logger.addHandler(rotating_handler)
    return logger


logger = _build_logger()


def log_event(event: str, **payload: object) -> None:
    """One structured INFO line, e.g. `event=stream_finished payload={'chunks': 3}`."""

    logger.info("event=%s payload=%s", event, payload)
