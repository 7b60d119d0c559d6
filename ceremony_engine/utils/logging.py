"""Structured logging setup built on structlog.

Every module obtains its logger through :func:`get_logger` and emits
snake_case events with key/value context, e.g.::

    logger = get_logger("llm.client")
    logger.info("generation_success", provider="claude", output_tokens=512)
"""

from __future__ import annotations

import logging
import sys

import structlog

_configured = False


def setup_logging(debug: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    In debug mode events are rendered for humans on the console; otherwise
    they are emitted as one JSON object per line.
    """
    global _configured

    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    renderer = (
        structlog.dev.ConsoleRenderer()
        if debug
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger, configuring defaults on first use."""
    if not _configured:
        setup_logging()
    return structlog.get_logger(name)
