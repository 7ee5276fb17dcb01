"""Structured logging utilities for the repository service."""

from __future__ import annotations

import logging
from typing import Optional

import structlog

from repository_service.config import settings


def _get_log_level() -> int:
    env = settings.ENVIRONMENT.lower()
    default = {
        "production": logging.INFO,
        "development": logging.DEBUG,
        "test": logging.WARNING,
    }.get(env, logging.INFO)
    level = logging.getLevelName(settings.LOG_LEVEL)
    return level if isinstance(level, int) else default


def configure_logging(level: Optional[int] = None) -> None:
    """Configure structlog with JSON output and context variables."""
    log_level = level if level is not None else _get_log_level()
    logging.basicConfig(level=log_level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger."""
    return structlog.get_logger(name)
