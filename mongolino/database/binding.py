"""
Lazy collection bindings.

Each document class is bound to one collection, resolved the first time an
operation needs it and kept for the lifetime of the process. Resolution
connects to the configured target, selects the database and collection and
ensures the text index over the full-text projection exists.

Resolution is single-flight: concurrent first callers wait for the one
in-flight resolution and share its result. A resolution that fails leaves
the binding unresolved, so the next call tries again.

Configuration is read from the document class at resolution time:

    connection_string   target URI (default: settings.mongo_uri)
    database            database name (default: settings.db_name)
    collection_name     collection name (default: lower-cased class name)

Changing these attributes after the first resolution has no effect.

The blocking collection handle is fixed at resolution. The asyncio handle is
looked up on each access through the client of the running event loop, since
a motor client cannot move between loops.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.collection import Collection

from ..config import get_settings
from ..constants import FULL_TEXT_FIELD, TEXT_INDEX_NAME
from ..observability import get_logger, log_operation, store_context
from .connection import get_async_client, get_client, resolve_uri, verify_client
from .errors import store_operation
from .indexes import create_index, text_index_keys

logger = get_logger(__name__)


@dataclass(frozen=True)
class BoundCollection:
    """Live handles for one document class. Read-only once created."""

    collection: Collection
    database_name: str
    collection_name: str
    connection_string: str

    @property
    def async_collection(self) -> AsyncIOMotorCollection:
        """The same collection through the asyncio client of the running loop."""
        client = get_async_client(self.connection_string)
        return client[self.database_name][self.collection_name]


class CollectionBinding:
    """
    One-time resolution of a document class to its collection.

    Example:
        binding = get_binding(Person)
        bound = binding.resolve()
        bound.collection.count_documents({})
    """

    def __init__(self, document_cls: type) -> None:
        self.document_cls = document_cls
        self._bound: BoundCollection | None = None
        self._lock = threading.Lock()

    @property
    def resolved(self) -> bool:
        return self._bound is not None

    def resolve(self) -> BoundCollection:
        """
        Resolve the binding, connecting on first use.

        Raises:
            ConnectivityError: If the target is unreachable
            IndexConflictError: If an incompatible text index already exists
            StoreError: If the server rejects the connection or the names
        """
        bound = self._bound
        if bound is not None:
            return bound

        with self._lock:
            if self._bound is None:
                self._bound = self._open()
            return self._bound

    async def resolve_async(self) -> BoundCollection:
        """Resolve without blocking the event loop."""
        bound = self._bound
        if bound is not None:
            return bound
        return await asyncio.to_thread(self.resolve)

    def _open(self) -> BoundCollection:
        start_time = time.time()
        cls = self.document_cls
        settings = get_settings()

        connection_string = resolve_uri(getattr(cls, "connection_string", None))
        database_name = getattr(cls, "database", None) or settings.db_name
        collection_name = getattr(cls, "collection_name", None) or cls.__name__.lower()

        with store_context(
            database=database_name, collection=collection_name, document_type=cls.__name__
        ):
            logger.info(f"Binding {cls.__name__} to collection '{database_name}.{collection_name}'")
            try:
                with store_operation("binding.resolve", collection=collection_name):
                    client = get_client(connection_string)
                    verify_client(client, connection_string)
                    collection = client[database_name][collection_name]
                    create_index(
                        collection,
                        text_index_keys(FULL_TEXT_FIELD),
                        name=TEXT_INDEX_NAME,
                    )
            except Exception:
                log_operation(
                    logger,
                    "binding.resolve",
                    level=logging.ERROR,
                    success=False,
                    duration_ms=(time.time() - start_time) * 1000,
                )
                raise

            log_operation(logger, "binding.resolve", duration_ms=(time.time() - start_time) * 1000)

        return BoundCollection(
            collection=collection,
            database_name=database_name,
            collection_name=collection_name,
            connection_string=connection_string,
        )


_bindings: dict[type, CollectionBinding] = {}
_bindings_lock = threading.Lock()


def get_binding(document_cls: type) -> CollectionBinding:
    """Get the process-wide binding for a document class, creating it unresolved."""
    binding = _bindings.get(document_cls)
    if binding is not None:
        return binding

    with _bindings_lock:
        binding = _bindings.get(document_cls)
        if binding is None:
            binding = CollectionBinding(document_cls)
            _bindings[document_cls] = binding
        return binding
