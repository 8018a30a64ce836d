"""
Database layer.

Shared clients, lazy collection bindings, index helpers and GridFS blob
buckets.
"""

from .binding import BoundCollection, CollectionBinding, get_binding
from .blobs import BlobBucket, BoundBucket, open_bucket
from .connection import get_async_client, get_client, verify_client
from .errors import store_operation, translate_error
from .identifiers import parse_object_id
from .indexes import create_index, create_index_async, index_name

__all__ = [
    # Bindings
    "CollectionBinding",
    "BoundCollection",
    "get_binding",
    # Blob buckets
    "BlobBucket",
    "BoundBucket",
    "open_bucket",
    # Clients
    "get_client",
    "get_async_client",
    "verify_client",
    # Errors
    "store_operation",
    "translate_error",
    # Identifiers
    "parse_object_id",
    # Indexes
    "create_index",
    "create_index_async",
    "index_name",
]
