"""
Mongolino - typed documents over MongoDB

Dataclass entities bound lazily to their own collections, with a full-text
projection, blocking and asyncio operations, and GridFS blob buckets.
"""

# Configuration
from .config import StoreSettings, configure, get_settings
# Database layer
from .database import BlobBucket, open_bucket, parse_object_id
# Exceptions
from .exceptions import (ConfigurationError, ConnectivityError, FormatError,
                         IndexConflictError, MongolinoError, SelectorError,
                         StoreError, UnsavedDocumentError)
# Error channel
from .observability import add_error_handler, remove_error_handler
# Documents
from .repositories import (Document, Entity, Selector, add_to_set,
                           increment_by, one_of, where)

__version__ = "0.1.0"

__all__ = [
    # Documents
    "Document",
    "Entity",
    "Selector",
    "where",
    "one_of",
    "increment_by",
    "add_to_set",
    # Blobs
    "BlobBucket",
    "open_bucket",
    "parse_object_id",
    # Configuration
    "StoreSettings",
    "configure",
    "get_settings",
    # Error channel
    "add_error_handler",
    "remove_error_handler",
    # Exceptions
    "MongolinoError",
    "ConnectivityError",
    "FormatError",
    "IndexConflictError",
    "StoreError",
    "SelectorError",
    "UnsavedDocumentError",
    "ConfigurationError",
]
