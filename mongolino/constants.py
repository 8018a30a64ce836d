"""
Constants for Mongolino.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

from typing import Final

# ============================================================================
# CONNECTION CONSTANTS
# ============================================================================

DEFAULT_MONGO_URI: Final[str] = "mongodb://localhost:27017"
"""Target used when neither the document class nor the environment names one."""

DEFAULT_DATABASE: Final[str] = "default"
"""Database used for document collections when none is configured."""

DEFAULT_BLOB_DATABASE: Final[str] = "gridfs"
"""Database used by the default blob bucket domain."""

DEFAULT_BLOB_DOMAIN: Final[str] = "gridfs"
"""Name of the default blob bucket domain."""

DEFAULT_BUCKET_NAME: Final[str] = "fs"
"""GridFS bucket prefix (``fs.files`` / ``fs.chunks``)."""

DEFAULT_MAX_POOL_SIZE: Final[int] = 50
"""Default maximum MongoDB connection pool size."""

DEFAULT_MIN_POOL_SIZE: Final[int] = 1
"""Default minimum MongoDB connection pool size."""

DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 5000
"""Default server selection timeout in milliseconds."""

DEFAULT_MAX_IDLE_TIME_MS: Final[int] = 45000
"""Default maximum idle time for pooled connections in milliseconds."""

APP_NAME: Final[str] = "Mongolino"
"""Application name reported to the server."""

# ============================================================================
# FULL-TEXT PROJECTION CONSTANTS
# ============================================================================

FULL_TEXT_FIELD: Final[str] = "full_text"
"""Attribute and document key holding the derived full-text projection."""

TEXT_INDEX_NAME: Final[str] = "full_text_text"
"""Name of the text index built over the projection."""

REMOVABLE_CHARACTERS: Final[str] = " \t\r\n.,;:!?\"'()[]{}<>/\\|"
"""Characters that split attribute values into projection tokens."""

ID_FIELD: Final[str] = "_id"
"""Document key of the identifier."""

# ============================================================================
# INDEX CONFLICT DETECTION
# ============================================================================

INDEX_OPTIONS_CONFLICT: Final[int] = 85
"""Server error code: an equivalent index exists with different options."""

INDEX_KEY_SPECS_CONFLICT: Final[int] = 86
"""Server error code: an index with the same name has different keys."""

INDEX_CONFLICT_CODES: Final[frozenset[int]] = frozenset(
    {INDEX_OPTIONS_CONFLICT, INDEX_KEY_SPECS_CONFLICT}
)

# ============================================================================
# BACKGROUND EXECUTION
# ============================================================================

BACKGROUND_MAX_WORKERS: Final[int] = 4
"""Worker threads used for fire-and-forget blocking operations."""
