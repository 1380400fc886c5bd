"""
Structured logging.

Every module logs through get_logger(__name__) and emits an event name plus
key value context, for example:

    logger.info("program_loaded", spec="fw", node="n1", handle=7)

configure_logging is called once by the process entry point. Tests do not
need to call it, structlog prints with its defaults.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def configure_logging(level: str = "info", json_format: bool | None = None) -> None:
    """
    Configure structlog for the process.

    level
    Log level name, case insensitive.

    json_format
    True for JSON lines, False for console output, None picks JSON when
    stdout is not a terminal.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # resolve the output stream per call so a reconfigure takes effect everywhere
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger bound to the module name."""
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name, logger_name=name)
