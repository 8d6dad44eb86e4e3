"""Structured Logging Configuration.

This module configures structlog once per process. Output is JSON for
production log aggregation, or a human readable console format for local
development.

Configuration:
- LOG_FORMAT: "json" (default) or "console"
- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
- Context binding support (task_name, subscription_id, item_id, ...)

Usage:
    from app.utils.logging import configure_logging, get_logger

    configure_logging()
    log = get_logger(__name__)
    log.info("job_started", task_name="content_sync")
"""

import logging
import os
import sys
from typing import Any

import structlog

_configured = False


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once; only the first call takes effect unless
    an explicit level or format is passed.

    Args:
        level: Log level name, defaults to LOG_LEVEL env var or INFO.
        fmt: "json" or "console", defaults to LOG_FORMAT env var or json.
    """
    global _configured
    if _configured and level is None and fmt is None:
        return

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    output_format = (fmt or os.getenv("LOG_FORMAT", "json")).lower()

    renderer: Any
    if output_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> Any:
    """Get a structured logger instance for the given module.

    Args:
        name: Module name (typically __name__)

    Returns:
        structlog bound logger
    """
    return structlog.get_logger(name)
