"""Centralized logging configuration for the video bridge service."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable

from .services.events import collect_correlation_context


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s%(correlation)s: %(message)s"

# Driver loggers that are chatty at INFO and below.
_NOISY_LOGGERS = ("httpx", "httpcore", "pymongo")


class CorrelationFilter(logging.Filter):
    """Attach the active request and job identifiers to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = collect_correlation_context()
        record.request_id = context.get("request_id", "")
        record.job_id = context.get("job_id", "")
        tags = [value for value in (record.request_id[:8], record.job_id) if value]
        record.correlation = f" [{' '.join(tags)}]" if tags else ""
        return True


def configure_logging(
    level: int = logging.INFO,
    *,
    handlers: Iterable[logging.Handler] | None = None,
    quiet_level: int = logging.WARNING,
) -> Logger:
    """Configure the root logger and tag records with correlation identifiers."""

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        handlers = [stream_handler]

    for handler in handlers:
        if not any(isinstance(existing, CorrelationFilter) for existing in handler.filters):
            handler.addFilter(CorrelationFilter())
        logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, quiet_level))

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the service log file inside *storage_root*, creating the directory."""

    storage_root.mkdir(parents=True, exist_ok=True)
    return storage_root / "video_bridge.log"


__all__ = ["CorrelationFilter", "DEFAULT_LOG_FORMAT", "configure_logging", "get_log_file_path"]
