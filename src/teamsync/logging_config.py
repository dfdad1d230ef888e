"""structlog configuration for teamsync.

Set TEAMSYNC_DEBUG=1 to lower the level to debug.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

ENV_DEBUG = "TEAMSYNC_DEBUG"


def _debug_enabled() -> bool:
    return os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes", "on")


def configure_logging(debug: bool | None = None) -> None:
    """Configure structlog to render to stderr.

    Safe to call more than once; the last call wins.
    """
    if debug is None:
        debug = _debug_enabled()
    level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger(f"teamsync.{name}")
