"""
Pytest configuration and shared fixtures for Mongolino tests.

This module provides:
- An in-memory MongoDB stand-in shared by the blocking and asyncio clients
- Fixtures that patch the client registry onto it
- Registry resets between tests
"""

import copy
import threading
import time
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from pymongo.errors import DuplicateKeyError

from mongolino.config import StoreSettings, configure
from mongolino.database import binding, blobs, connection
from mongolino.observability import get_metrics_collector
from mongolino.observability import errors as error_channel

# ============================================================================
# IN-MEMORY STORE
# ============================================================================


def _field_matches(stored: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$in":
                if isinstance(stored, list):
                    if not any(item in operand for item in stored):
                        return False
                elif stored not in operand:
                    return False
            else:
                raise NotImplementedError(f"Fake store does not support {op}")
        return True
    if isinstance(stored, list) and not isinstance(condition, list):
        return condition in stored
    return stored == condition


def matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    """Evaluate the subset of the query language the library emits."""
    for key, condition in (query or {}).items():
        if key == "$text":
            terms = condition["$search"].casefold().split()
            tokens = {t.casefold() for t in doc.get("full_text", "").split()}
            if not any(term in tokens for term in terms):
                return False
        elif not _field_matches(doc.get(key), condition):
            return False
    return True


def _project(doc: Dict[str, Any], projection: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not projection:
        return copy.deepcopy(doc)
    return {k: copy.deepcopy(v) for k, v in doc.items() if k == "_id" or projection.get(k)}


def _sort_key(value: Any):
    return (value is not None, value)


class FakeCursor:
    """Blocking cursor over a snapshot of matching documents."""

    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs

    def sort(self, key: str, direction: int = 1) -> "FakeCursor":
        self._docs = sorted(self._docs, key=lambda d: _sort_key(d.get(key)), reverse=direction < 0)
        return self

    def skip(self, count: int) -> "FakeCursor":
        self._docs = self._docs[count:]
        return self

    def limit(self, count: int) -> "FakeCursor":
        if count:
            self._docs = self._docs[:count]
        return self

    def __iter__(self):
        return iter(list(self._docs))


class FakeAsyncCursor(FakeCursor):
    """Motor-like cursor: ``async for`` and ``to_list``."""

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        docs = list(self._docs)
        return docs if length is None else docs[:length]

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in list(self._docs):
            yield doc


class FakeCollection:
    """Synchronous collection over a shared list of documents."""

    def __init__(self, name: str):
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        self.indexes: Dict[str, Any] = {}
        self.create_index_calls: List[Any] = []
        self.create_index_error: Optional[Exception] = None
        self.create_index_delay = 0.0
        self._lock = threading.Lock()

    # Queries -----------------------------------------------------------

    def _select(self, query, projection=None, skip=0, limit=0):
        with self._lock:
            docs = [_project(d, projection) for d in self.docs if matches(d, query)]
        docs = docs[skip:]
        return docs[:limit] if limit else docs

    def find(self, filter=None, projection=None, skip=0, limit=0):
        return FakeCursor(self._select(filter, projection, skip, limit))

    def find_one(self, filter=None, projection=None, skip=0):
        docs = self._select(filter, projection, skip, 1)
        return docs[0] if docs else None

    def count_documents(self, filter):
        return len(self._select(filter))

    # Writes ------------------------------------------------------------

    def insert_one(self, document):
        with self._lock:
            if any(d["_id"] == document["_id"] for d in self.docs):
                raise DuplicateKeyError(f"duplicate _id {document['_id']}")
            self.docs.append(copy.deepcopy(document))
        return SimpleNamespace(inserted_id=document["_id"])

    def insert_many(self, documents):
        ids = [self.insert_one(d).inserted_id for d in documents]
        return SimpleNamespace(inserted_ids=ids)

    def replace_one(self, filter, replacement):
        with self._lock:
            for i, doc in enumerate(self.docs):
                if matches(doc, filter):
                    self.docs[i] = {**copy.deepcopy(replacement), "_id": doc["_id"]}
                    return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    def update_one(self, filter, update):
        with self._lock:
            for doc in self.docs:
                if matches(doc, filter):
                    self._apply(doc, update)
                    return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    @staticmethod
    def _apply(doc, update):
        for op, changes in update.items():
            for key, value in changes.items():
                if op == "$set":
                    doc[key] = value
                elif op == "$inc":
                    doc[key] = doc.get(key, 0) + value
                elif op == "$addToSet":
                    values = value["$each"] if isinstance(value, dict) else [value]
                    current = doc.setdefault(key, [])
                    for item in values:
                        if item not in current:
                            current.append(item)
                else:
                    raise NotImplementedError(f"Fake store does not support {op}")

    def delete_one(self, filter):
        with self._lock:
            for i, doc in enumerate(self.docs):
                if matches(doc, filter):
                    del self.docs[i]
                    return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def delete_many(self, filter):
        with self._lock:
            kept = [d for d in self.docs if not matches(d, filter)]
            deleted = len(self.docs) - len(kept)
            self.docs[:] = kept
        return SimpleNamespace(deleted_count=deleted)

    # Indexes -----------------------------------------------------------

    def create_index(self, keys, name=None, **kwargs):
        self.create_index_calls.append((keys, name))
        if self.create_index_delay:
            time.sleep(self.create_index_delay)
        if self.create_index_error is not None:
            raise self.create_index_error
        self.indexes[name] = keys
        return name


class FakeAsyncCollection:
    """Asyncio view of the same documents as a FakeCollection."""

    def __init__(self, sync: FakeCollection):
        self.sync = sync
        self.name = sync.name

    def find(self, filter=None, projection=None, skip=0, limit=0):
        return FakeAsyncCursor(self.sync._select(filter, projection, skip, limit))

    async def find_one(self, filter=None, projection=None, skip=0):
        return self.sync.find_one(filter, projection=projection, skip=skip)

    async def count_documents(self, filter):
        return self.sync.count_documents(filter)

    async def insert_one(self, document):
        return self.sync.insert_one(document)

    async def insert_many(self, documents):
        return self.sync.insert_many(documents)

    async def replace_one(self, filter, replacement):
        return self.sync.replace_one(filter, replacement)

    async def update_one(self, filter, update):
        return self.sync.update_one(filter, update)

    async def delete_one(self, filter):
        return self.sync.delete_one(filter)

    async def delete_many(self, filter):
        return self.sync.delete_many(filter)

    async def create_index(self, keys, name=None, **kwargs):
        return self.sync.create_index(keys, name=name, **kwargs)


class FakeServer:
    """Collections keyed by (database, collection), shared by every client."""

    def __init__(self):
        self.collections: Dict[tuple, FakeCollection] = {}
        self.ping_error: Optional[Exception] = None
        self.clients: List["FakeMongoClient"] = []
        self._lock = threading.Lock()

    def collection(self, database: str, name: str) -> FakeCollection:
        with self._lock:
            key = (database, name)
            if key not in self.collections:
                self.collections[key] = FakeCollection(name)
            return self.collections[key]

    def ping(self, command: str):
        if self.ping_error is not None:
            raise self.ping_error
        return {"ok": 1}


class FakeDatabase:
    def __init__(self, server: FakeServer, name: str, asyncio: bool):
        self.server = server
        self.name = name
        self.asyncio = asyncio

    def __getitem__(self, name: str):
        collection = self.server.collection(self.name, name)
        return FakeAsyncCollection(collection) if self.asyncio else collection


class FakeMongoClient:
    """Stands in for MongoClient and AsyncIOMotorClient."""

    def __init__(self, server: FakeServer, uri: str, asyncio: bool = False, **options):
        self.server = server
        self.uri = uri
        self.options = options
        self.asyncio = asyncio
        self.closed = False
        self.admin = MagicMock()
        self.admin.command = MagicMock(side_effect=server.ping)
        server.clients.append(self)

    def __getitem__(self, name: str) -> FakeDatabase:
        return FakeDatabase(self.server, name, self.asyncio)

    def close(self):
        self.closed = True


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def reset_registries():
    """Start every test with no clients, bindings, buckets or handlers."""

    def clear():
        binding._bindings.clear()
        blobs._buckets.clear()
        connection._clients.clear()
        connection._async_clients.clear()
        error_channel._handlers.clear()
        get_metrics_collector().reset()

    clear()
    configure(StoreSettings())
    yield
    clear()


@pytest.fixture
def fake_server(monkeypatch) -> FakeServer:
    """Route every client created by the library to one in-memory server."""
    server = FakeServer()
    monkeypatch.setattr(
        connection,
        "MongoClient",
        lambda uri, **options: FakeMongoClient(server, uri, **options),
    )
    monkeypatch.setattr(
        connection,
        "AsyncIOMotorClient",
        lambda uri, **options: FakeMongoClient(server, uri, asyncio=True, **options),
    )
    return server


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: needs Docker; runs against a real MongoDB container"
    )


# ============================================================================
# TESTCONTAINERS FIXTURES (Real MongoDB for Integration Tests)
# ============================================================================


@pytest.fixture(scope="session")
def mongodb_container():
    """
    Start a MongoDB container for integration tests.

    Session-scoped: the container starts once and is reused by every
    integration test. Skipped when testcontainers is not installed.
    """
    mongodb = pytest.importorskip(
        "testcontainers.mongodb",
        reason="testcontainers not installed. Install with: pip install -e '.[test]'",
    )
    with mongodb.MongoDbContainer(image="mongo:7.0") as container:
        yield container


@pytest.fixture
def mongodb_connection_string(mongodb_container) -> str:
    """Connection string for the container, credentials included."""
    return mongodb_container.get_connection_url()


@pytest.fixture
def real_store(mongodb_connection_string, request) -> str:
    """
    Point the library at the container with a database of its own.

    Yields the database name. The database and its blob database are
    dropped, and every client the test created is closed, afterwards.
    """
    from pymongo import MongoClient

    db_name = f"mongolino_{request.node.name}"[:60].replace("[", "_").replace("]", "_")
    configure(
        StoreSettings(
            mongo_uri=mongodb_connection_string,
            db_name=db_name,
            blob_db_name=f"{db_name}_blobs"[:63],
        )
    )
    yield db_name

    for client in [*connection._clients.values(), *connection._async_clients.values()]:
        client.close()
    admin = MongoClient(mongodb_connection_string)
    try:
        admin.drop_database(db_name)
        admin.drop_database(f"{db_name}_blobs"[:63])
    finally:
        admin.close()
