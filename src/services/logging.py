"""
Structured logging setup shared by the service entry points.
"""

import logging
import os
from typing import Optional

import structlog

from src.config.models import LogFormat, LogLevel


def setup_logging(
    level: Optional[LogLevel | str] = None,
    log_format: LogFormat | str = LogFormat.JSON,
) -> None:
    """
    Configure structlog on top of the standard logging module.

    Args:
        level: Log level, defaults to the LOG_LEVEL environment variable or INFO.
        log_format: JSON for machine-readable output, TEXT for the console.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", LogLevel.INFO.value)
    level_name = LogLevel(str(getattr(level, "value", level)).upper()).value

    if LogFormat(getattr(log_format, "value", log_format)) == LogFormat.JSON:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name),
    )

    # Reduce noise from uvicorn access logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
