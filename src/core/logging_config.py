"""Structured logging configuration.

Store and lock events are rendered as JSON lines. Fields bound with
``job_log_context`` are merged into every event logged inside the block,
so lock and persist events of one run share their job name.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.add_log_level,
    structlog.processors.JSONRenderer(),
]


def get_logger(name: str) -> Any:
    """Return a module logger instance.

    Args:
        name: Logger name, usually __name__.

    Returns:
        A structlog logger with structured output.
    """
    if not structlog.is_configured():
        structlog.configure(processors=_PROCESSORS, cache_logger_on_first_use=True)
    return structlog.get_logger(name)


@contextmanager
def job_log_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` to every event logged in the current context."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield
