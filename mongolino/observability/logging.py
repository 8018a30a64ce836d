"""
Logging utilities for Mongolino.

Records logged while a store call is in flight carry the database,
collection and operation it runs against. Binding resolution and
``store_operation`` open a ``store_context`` around the driver calls they
make; loggers from ``get_logger`` copy that context into every record's
``extra``. The context lives in a ContextVar, so it follows asyncio tasks
and ``asyncio.to_thread`` workers and is never shared between threads.
"""

import contextvars
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

_store_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "mongolino_store_context", default=None
)


def get_store_context() -> dict[str, Any]:
    """Copy of the fields set by the enclosing ``store_context`` blocks."""
    return dict(_store_context.get() or {})


@contextmanager
def store_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Add fields to the store context until the block exits.

    Nested blocks extend the outer context; ``None`` values are skipped.

    Example:
        with store_context(database="shop", collection="person"):
            logger.info("resolving")   # extra has database and collection
    """
    merged = get_store_context()
    merged.update({key: value for key, value in fields.items() if value is not None})
    token = _store_context.set(merged)
    try:
        yield merged
    finally:
        _store_context.reset(token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that puts the current store context on each record."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = get_store_context()
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    """Get a logger for ``name`` that adds the store context to its records."""
    return ContextualLoggerAdapter(logging.getLogger(name), {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.INFO,
    success: bool = True,
    duration_ms: float | None = None,
    **context: Any,
) -> None:
    """
    Log the outcome of a store operation.

    Args:
        logger: Logger or adapter to write to
        operation: Operation name, e.g. ``binding.resolve``
        level: Log level
        success: Whether the operation succeeded
        duration_ms: Operation duration in milliseconds
        **context: Fields added to the record's ``extra``
    """
    extra: dict[str, Any] = {**get_store_context(), **context}
    extra["operation"] = operation
    extra["success"] = success

    message = f"{operation} {'succeeded' if success else 'failed'}"
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)
        message += f" in {duration_ms:.2f}ms"

    logger.log(level, message, extra=extra)
