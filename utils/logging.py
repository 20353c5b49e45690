# utils/logging.py

"""Logging setup for CLI runs of the automation core.

structlog sits in front of standard logging so library loggers (httpx and
friends) and our own loggers end up in the same handlers.
"""

from __future__ import annotations

import logging
import logging.handlers
import os

import structlog
from config import settings
from rich.logging import RichHandler

logger = structlog.get_logger(__name__)

__all__ = ["setup_logging"]

_NOISY_LOGGERS = ("httpx", "httpcore")
_MAX_LOG_BYTES = 10 * 1024 * 1024
_LOG_BACKUPS = 5


def _plain_formatter() -> logging.Formatter:
    return logging.Formatter(settings.LOG_FORMAT, datefmt=settings.LOG_DATE_FORMAT)


def _log_file_path() -> str | None:
    if not settings.LOG_FILE:
        return None
    if os.path.isabs(settings.LOG_FILE):
        return settings.LOG_FILE
    return os.path.join(settings.BASE_OUTPUT_DIR, settings.LOG_FILE)


def _file_handler(path: str) -> logging.Handler:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=_MAX_LOG_BYTES, backupCount=_LOG_BACKUPS, encoding="utf-8"
    )
    handler.setFormatter(_plain_formatter())
    return handler


def _console_handler(level: str) -> logging.Handler:
    if settings.ENABLE_RICH_PROGRESS:
        return RichHandler(level=level, rich_tracebacks=True, show_path=False, markup=False)
    handler = logging.StreamHandler()
    handler.setFormatter(_plain_formatter())
    return handler


def setup_logging(log_level: str | None = None) -> None:
    """Route structlog through stdlib logging with file and console output."""
    level = (log_level or settings.LOG_LEVEL_STR).upper()

    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.render_to_log_kwargs,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    file_path = _log_file_path()
    if file_path:
        try:
            root_logger.addHandler(_file_handler(file_path))
        except OSError as e:  # pragma: no cover - path issues
            logger.error(f"Could not open log file {file_path}: {e}")

    root_logger.addHandler(_console_handler(level))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging configured.", log_level=level, log_file=file_path)
