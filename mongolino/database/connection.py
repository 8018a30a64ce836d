"""
Shared MongoDB client registry.

Every document binding and blob bucket pointing at the same target shares
one client, and with it one connection pool. Synchronous operations use a
pymongo ``MongoClient``; the ``*_async`` variants use a motor
``AsyncIOMotorClient`` to the same target.

A motor client attaches to the event loop it first runs on and cannot be
used from another one. Asyncio clients are therefore kept per target and
per running loop: code that calls ``asyncio.run`` repeatedly, or runs
loops in several threads, gets one client for each loop. Clients whose
loop has been closed are closed and dropped the next time a client is
created.

Usage:
    from mongolino.database import get_client, get_async_client

    client = get_client("mongodb://mongo:27017/")
    db = client["shop"]
"""

import asyncio
import logging
import threading

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import MongoClient
from pymongo.errors import ConfigurationError as PyMongoConfigurationError
from pymongo.errors import ConnectionFailure, PyMongoError

from ..config import get_settings
from ..constants import APP_NAME, DEFAULT_MAX_IDLE_TIME_MS
from ..exceptions import ConfigurationError, ConnectivityError
from .errors import translate_error

logger = logging.getLogger(__name__)

# Clients keyed by connection string
_clients: dict[str, MongoClient] = {}
# Asyncio clients keyed by (connection string, event loop). The loop is None
# for clients requested outside a running loop.
_async_clients: dict[tuple[str, asyncio.AbstractEventLoop | None], AsyncIOMotorClient] = {}
# threading.Lock: bindings are resolved from caller threads and from
# asyncio.to_thread workers alike
_clients_lock = threading.Lock()


def _client_options() -> dict:
    settings = get_settings()
    return {
        "serverSelectionTimeoutMS": settings.server_selection_timeout_ms,
        "appname": APP_NAME,
        "maxPoolSize": settings.max_pool_size,
        "minPoolSize": settings.min_pool_size,
        "maxIdleTimeMS": DEFAULT_MAX_IDLE_TIME_MS,
    }


def resolve_uri(connection_string: str | None) -> str:
    """Return the given target, or the configured default when unset."""
    return connection_string or get_settings().mongo_uri


def get_client(connection_string: str | None = None) -> MongoClient:
    """
    Gets or creates the shared synchronous client for a target.

    Args:
        connection_string: MongoDB connection URI (default: settings)

    Returns:
        Shared MongoClient instance

    Raises:
        ConfigurationError: If the connection string cannot be parsed
    """
    uri = resolve_uri(connection_string)

    client = _clients.get(uri)
    if client is not None:
        return client

    with _clients_lock:
        # Double-check: another thread may have created it while we waited
        client = _clients.get(uri)
        if client is not None:
            return client

        logger.info(f"Creating shared MongoDB client (appname={APP_NAME})")
        try:
            client = MongoClient(uri, **_client_options())
        except PyMongoConfigurationError as e:
            raise ConfigurationError(
                f"Invalid MongoDB connection string: {e}", config_key="mongo_uri"
            ) from e
        _clients[uri] = client
        return client


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _drop_closed_loop_clients() -> None:
    # Caller holds _clients_lock
    stale = [key for key in _async_clients if key[1] is not None and key[1].is_closed()]
    for key in stale:
        logger.debug("Closing async MongoDB client of a closed event loop")
        _async_clients.pop(key).close()


def get_async_client(connection_string: str | None = None) -> AsyncIOMotorClient:
    """
    Gets or creates the asyncio client for a target and the running loop.

    Args:
        connection_string: MongoDB connection URI (default: settings)

    Returns:
        AsyncIOMotorClient shared by callers on the same event loop

    Raises:
        ConfigurationError: If the connection string cannot be parsed
    """
    key = (resolve_uri(connection_string), _running_loop())

    client = _async_clients.get(key)
    if client is not None:
        return client

    with _clients_lock:
        client = _async_clients.get(key)
        if client is not None:
            return client

        _drop_closed_loop_clients()
        logger.info(f"Creating shared async MongoDB client (appname={APP_NAME})")
        try:
            client = AsyncIOMotorClient(key[0], **_client_options())
        except PyMongoConfigurationError as e:
            raise ConfigurationError(
                f"Invalid MongoDB connection string: {e}", config_key="mongo_uri"
            ) from e
        _async_clients[key] = client
        return client


def verify_client(client: MongoClient, connection_string: str | None = None) -> None:
    """
    Ping the server behind a client.

    Raises:
        ConnectivityError: If the target is unreachable
        StoreError: If the server rejects the ping, e.g. failed authentication
    """
    try:
        client.admin.command("ping")
    except ConnectionFailure as e:
        logger.error(f"MongoDB target unreachable: {e}")
        raise ConnectivityError(
            f"Failed to connect to MongoDB: {e}",
            mongo_uri=connection_string,
            context={"error_type": type(e).__name__},
        ) from e
    except PyMongoError as e:
        logger.error(f"MongoDB target rejected ping: {e}")
        raise translate_error(e, "client.ping", mongo_uri=connection_string) from e
