"""Structured logging for kubenetviz, rendered as JSON lines by structlog."""

from __future__ import annotations

import logging
import sys

import structlog

_VALID_LEVELS = ("debug", "info", "warning", "error")


def setup_logging(level: str = "info", cluster_id: str = "") -> None:
    """Configure structlog to emit one JSON object per line on stderr.

    ``cluster_id`` is bound as a context variable so every event carries it
    without each component having to pass it along.
    """
    if level.lower() not in _VALID_LEVELS:
        level = "info"
    log_level = getattr(logging, level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if cluster_id:
        structlog.contextvars.bind_contextvars(cluster_id=cluster_id)


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Return a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]
