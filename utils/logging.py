# utils/logging.py

"""Logging helpers for Slotweave.

structlog renders through the standard library so third-party loggers and the
pipeline share one set of handlers: a rotating file under the output
directory and a console handler (Rich when the progress panel is enabled).
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
_LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
_LOG_FILE_BACKUPS = 5


def _formatter() -> logging.Formatter:
    return logging.Formatter(settings.LOG_FORMAT, datefmt=settings.LOG_DATE_FORMAT)


def _configure_structlog() -> None:
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


def _log_file_path(log_file: str) -> str:
    if os.path.isabs(log_file):
        return log_file
    return os.path.join(settings.BASE_OUTPUT_DIR, log_file)


def _file_handler() -> logging.Handler | None:
    if not settings.LOG_FILE:
        return None
    file_path = _log_file_path(settings.LOG_FILE)
    try:
        log_dir = os.path.dirname(file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            file_path,
            maxBytes=_LOG_FILE_MAX_BYTES,
            backupCount=_LOG_FILE_BACKUPS,
            mode="a",
            encoding="utf-8",
        )
    except OSError as e:
        logger.error("Error setting up file logger at %s: %s", file_path, e)
        return None
    handler.setFormatter(_formatter())
    return handler


def _console_handler() -> logging.Handler:
    if settings.ENABLE_RICH_PROGRESS:
        # Chapter text may contain square brackets; keep Rich markup off.
        return RichHandler(
            level=settings.LOG_LEVEL_STR,
            rich_tracebacks=True,
            show_path=False,
            markup=False,
        )
    handler = logging.StreamHandler()
    handler.setFormatter(_formatter())
    return handler


def setup_logging() -> None:
    """Configure structlog and replace the root logger's handlers."""
    _configure_structlog()

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(settings.LOG_LEVEL_STR)

    file_handler = _file_handler()
    if file_handler is not None:
        root_logger.addHandler(file_handler)
    root_logger.addHandler(_console_handler())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger().info(
        "Slotweave logging setup complete.",
        log_level=logging.getLevelName(settings.LOG_LEVEL_STR),
    )
