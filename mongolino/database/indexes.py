"""
Index creation helpers.

Index creation is an idempotent request: asking for an index that already
exists with the same definition is a no-op on the server. Asking for one
that clashes with an existing definition raises IndexConflictError and is
never retried or dropped automatically.
"""

import logging
from typing import Any, Union

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING, TEXT
from pymongo.collection import Collection

from .errors import store_operation

logger = logging.getLogger(__name__)

IndexKeys = list[tuple[str, Union[int, str]]]


def normalize_keys(keys: Union[str, dict[str, Any], IndexKeys]) -> IndexKeys:
    """
    Normalize index keys to a list of (field_name, direction) tuples.

    A bare field name means an ascending index on that field.
    """
    if isinstance(keys, str):
        return [(keys, ASCENDING)]
    if isinstance(keys, dict):
        return list(keys.items())
    return list(keys)


def index_name(keys: IndexKeys) -> str:
    """
    Generate the server's default name for an index.

    Format: field1_1_field2_-1 (1 for ASCENDING, -1 for DESCENDING, "text" for text).
    """
    name_parts = []
    for key, direction in keys:
        if direction == ASCENDING:
            name_parts.append(f"{key}_1")
        elif direction == DESCENDING:
            name_parts.append(f"{key}_-1")
        else:
            name_parts.append(f"{key}_{direction}")
    return "_".join(name_parts)


def text_index_keys(field: str) -> IndexKeys:
    """Keys of a text index over a single field."""
    return [(field, TEXT)]


def create_index(
    collection: Collection,
    keys: Union[str, dict[str, Any], IndexKeys],
    name: str | None = None,
    **kwargs: Any,
) -> str:
    """
    Create an index with the blocking driver.

    Returns:
        Name of the index

    Raises:
        IndexConflictError: If an incompatible index already exists
        ConnectivityError: If the server is unreachable
    """
    keys = normalize_keys(keys)
    name = name or index_name(keys)
    with store_operation(
        "index.create", collection=collection.name, index_keys=keys, index_name=name
    ):
        created = collection.create_index(keys, name=name, **kwargs)
    logger.debug(f"Ensured index '{created}' on '{collection.name}'")
    return created


async def create_index_async(
    collection: AsyncIOMotorCollection,
    keys: Union[str, dict[str, Any], IndexKeys],
    name: str | None = None,
    **kwargs: Any,
) -> str:
    """Asyncio twin of ``create_index``."""
    keys = normalize_keys(keys)
    name = name or index_name(keys)
    with store_operation(
        "index.create", collection=collection.name, index_keys=keys, index_name=name
    ):
        created = await collection.create_index(keys, name=name, **kwargs)
    logger.debug(f"Ensured index '{created}' on '{collection.name}'")
    return created
