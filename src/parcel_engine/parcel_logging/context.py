"""Per-operation logging context for adding order fields to log records."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

_context: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)


class LogContext:
    """Context-local store of fields attached to every log record.

    Backed by a ContextVar so request threads and asyncio tasks each see
    their own fields.
    """

    @staticmethod
    def set(**kwargs: Any) -> None:
        _context.set({**LogContext.get(), **kwargs})

    @staticmethod
    def get() -> dict[str, Any]:
        return dict(_context.get() or {})

    @staticmethod
    def clear() -> None:
        _context.set(None)


class ContextFilter(logging.Filter):
    """Injects LogContext fields into log records; explicit extras win."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in LogContext.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Set logging fields for the duration of a block.

    ContextFilter must be attached to the handler (see setup_logging).
    Nested blocks see the outer fields; the outer fields are restored on exit.
    """
    token = _context.set({**LogContext.get(), **kwargs})
    try:
        yield
    finally:
        _context.reset(token)


@contextmanager
def log_order_context(order_id: str, **kwargs: Any) -> Iterator[None]:
    """Tag records with order_id, correlated by the order unless told otherwise."""
    correlation_id = kwargs.pop("correlation_id", order_id)
    with log_context(order_id=order_id, correlation_id=correlation_id, **kwargs):
        yield
