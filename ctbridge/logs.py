"""Logging setup for ctbridge.

Library modules log through stdlib ``logging``; the service layer (app,
session) logs through structlog. ``configure_logging`` wires both to the same
stream so one process produces one consistent log.
"""

from __future__ import annotations

import logging
import sys

import structlog

from ctbridge.constants import CTraderConstants as c


def configure_logging(level: str = c.Logging.LEVEL, *, json: bool = False) -> None:
    """Configure stdlib logging and structlog.

    Args:
        level: Log level name (DEBUG, INFO, ...).
        json: Render JSON lines instead of the console format.

    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    shared_processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*shared_processors, structlog.stdlib.ExtraAdder()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # httpx logs every request at INFO, including the token endpoint
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


def mask_secret(value: str | None) -> str:
    """Show only the tail of a secret, enough to tell tokens apart."""
    if not value:
        return "<none>"
    visible = c.Logging.SECRET_VISIBLE_CHARS
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"...{value[-visible:]}"
