"""Logging configuration for Turnkeeper.

Every module logs through :func:`get_logger`. While a turn runs, the
orchestrator binds the turn's sequence id and step depth with
:func:`bind_turn`, so tracker, scheduler and tool lines can be correlated
without passing ids around.
"""

import logging
import sys
from typing import Any, TextIO

import structlog

from turnkeeper.config import get_config

TURN_CONTEXT_KEYS = ("sequence_id", "depth")


def _build_processors(fmt: str) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level name; defaults to ``logging.level`` from config
        fmt: ``console`` or ``json``; defaults to ``logging.format`` from config
        stream: Output stream, stderr unless given
    """
    if level is None or fmt is None:
        settings = get_config().logging
        level = level or settings.level
        fmt = fmt or settings.format

    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=_build_processors(fmt),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=True,
    )


def bind_turn(sequence_id: str, depth: int) -> None:
    """Attach the current turn step to every log line of this context."""
    structlog.contextvars.bind_contextvars(sequence_id=sequence_id, depth=depth)


def clear_turn() -> None:
    structlog.contextvars.unbind_contextvars(*TURN_CONTEXT_KEYS)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger, tagged with ``name`` (usually ``__name__``)."""
    if name:
        return structlog.get_logger().bind(logger=name)
    return structlog.get_logger()


log = get_logger(__name__)
