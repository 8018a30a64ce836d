"""
Fire-and-forget execution.

Both helpers return a handle the caller may keep or drop. If the operation
fails, the failure is reported to the process-wide error channel AND kept
on the handle, so dropping the handle never drops the failure.

Usage:
    # From blocking code
    future = background.submit(Person.delete, person, operation="document.delete")

    # From a coroutine
    task = background.spawn(Person.delete_async(person), operation="document.delete")
"""

import asyncio
import logging
import threading
from collections.abc import Callable, Coroutine
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, TypeVar

from .constants import BACKGROUND_MAX_WORKERS
from .observability import report_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()

# Strong references to running tasks; the event loop keeps only weak ones
_running_tasks: set[asyncio.Task] = set()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        with _executor_lock:
            if _executor is None:
                _executor = ThreadPoolExecutor(
                    max_workers=BACKGROUND_MAX_WORKERS, thread_name_prefix="mongolino"
                )
    return _executor


def _report_future(future: Future, operation: str, context: dict[str, Any]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        report_error(exc, operation, **context)


def _report_task(task: asyncio.Task, operation: str, context: dict[str, Any]) -> None:
    _running_tasks.discard(task)
    if task.cancelled():
        logger.debug(f"Background operation '{operation}' was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        report_error(exc, operation, **context)


def submit(
    fn: Callable[..., T], *args: Any, operation: str | None = None, **context: Any
) -> Future:
    """
    Run a blocking call on the shared worker pool.

    Args:
        fn: Callable to run
        *args: Positional arguments for ``fn``
        operation: Name reported with failures (default: ``fn``'s name)
        **context: Extra context reported with failures

    Returns:
        concurrent.futures.Future holding the result or the failure
    """
    operation = operation or getattr(fn, "__qualname__", repr(fn))
    future = _get_executor().submit(fn, *args)
    future.add_done_callback(lambda f: _report_future(f, operation, context))
    return future


def spawn(
    coro: Coroutine[Any, Any, T], operation: str | None = None, **context: Any
) -> "asyncio.Task[T]":
    """
    Schedule a coroutine on the running event loop.

    Cancelling the returned task stops waiting for the result; a write
    already sent to the server may still complete.

    Raises:
        RuntimeError: If called without a running event loop
    """
    operation = operation or getattr(coro, "__qualname__", repr(coro))
    task = asyncio.get_running_loop().create_task(coro)
    _running_tasks.add(task)
    task.add_done_callback(lambda t: _report_task(t, operation, context))
    return task
