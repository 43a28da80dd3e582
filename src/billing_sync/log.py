"""Structured logging configuration."""
from __future__ import annotations

import logging
import sys
from typing import Literal, Optional

import structlog

from .config import get_settings


def configure_logging(
    level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR"]] = None,
    format: Optional[Literal["json", "console"]] = None,
) -> None:
    """Configure structlog on top of the standard library logger.

    Args:
        level: Log level. Defaults to ``Settings.log_level``.
        format: ``json`` for log shippers, ``console`` for humans. Defaults to
            ``Settings.log_format``.
    """
    settings = get_settings()
    log_level = level or settings.log_level
    log_format = format or settings.log_format

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
    )

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=False,
            exception_formatter=structlog.dev.plain_traceback,
        )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
