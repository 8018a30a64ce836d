"""
Process-wide error channel.

Failures of background operations that nobody awaits are reported here.
Handlers are called in registration order; with no handler registered the
failure is logged at ERROR level with its traceback.

Usage:
    from mongolino.observability import add_error_handler

    def alert(exc, operation, context):
        pager.notify(f"{operation} failed: {exc}")

    add_error_handler(alert)
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[BaseException, str, dict[str, Any]], None]

_handlers: list[ErrorHandler] = []
_handlers_lock = threading.Lock()


def add_error_handler(handler: ErrorHandler) -> None:
    """Register a handler called with (exception, operation, context)."""
    with _handlers_lock:
        if handler not in _handlers:
            _handlers.append(handler)


def remove_error_handler(handler: ErrorHandler) -> None:
    """Unregister a handler. Unknown handlers are ignored."""
    with _handlers_lock:
        if handler in _handlers:
            _handlers.remove(handler)


def report_error(exc: BaseException, operation: str, **context: Any) -> None:
    """
    Route an unobserved failure to the registered handlers.

    A handler that raises is logged and does not stop the others.

    Args:
        exc: The failure
        operation: Name of the operation that failed
        **context: Additional context (collection, document_id, ...)
    """
    with _handlers_lock:
        handlers = list(_handlers)

    if not handlers:
        logger.error(
            f"Background operation '{operation}' failed: {exc}",
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={"operation": operation, **context},
        )
        return

    for handler in handlers:
        try:
            handler(exc, operation, context)
        except Exception:
            logger.exception(f"Error handler {handler!r} failed while reporting '{operation}'")
