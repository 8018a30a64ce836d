"""
Driver error translation.

``store_operation`` wraps every call into the driver, sync or async, so both
variants of an operation time, record and fail the same way.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from ..constants import INDEX_CONFLICT_CODES
from ..exceptions import ConnectivityError, IndexConflictError, StoreError
from ..observability import get_logger, record_operation, store_context

logger = get_logger(__name__)


def is_index_conflict(error: OperationFailure) -> bool:
    """Check whether a server failure reports an incompatible existing index."""
    if error.code in INDEX_CONFLICT_CODES:
        return True
    return "only one text index" in str(error).lower()


def translate_error(error: PyMongoError, operation: str, **context: Any) -> Exception:
    """Map a driver exception onto the Mongolino taxonomy."""
    context = {"operation": operation, **context}
    if isinstance(error, ConnectionFailure):
        return ConnectivityError(
            f"Lost connection to MongoDB during {operation}: {error}",
            context={**context, "error_type": type(error).__name__},
        )
    if isinstance(error, OperationFailure) and is_index_conflict(error):
        return IndexConflictError(
            f"Index conflicts with an existing index during {operation}: {error}",
            index_keys=context.pop("index_keys", None),
            code=error.code,
            context=context,
        )
    return StoreError(
        f"MongoDB error during {operation}: {error}",
        context={**context, "error_type": type(error).__name__},
    )


@contextmanager
def store_operation(operation: str, **context: Any) -> Iterator[None]:
    """
    Time a store call, record it and translate driver failures.

    Usable around awaited calls as well as blocking ones. Records logged
    inside the block carry the operation and its context fields.

    Example:
        with store_operation("document.insert", collection="person"):
            collection.insert_one(doc)
    """
    start_time = time.time()
    success = True
    try:
        with store_context(operation=operation, **context):
            yield
    except PyMongoError as e:
        success = False
        logger.error(f"{operation} failed: {e}", extra={"operation": operation, **context})
        raise translate_error(e, operation, **context) from e
    except Exception:
        success = False
        raise
    finally:
        duration_ms = (time.time() - start_time) * 1000
        tags = {"collection": context["collection"]} if "collection" in context else {}
        record_operation(operation, duration_ms, success, **tags)
