"""
Configuration management for Mongolino.

Settings are read from the environment once, when the first binding is
resolved. Document classes may override the target, database and collection
through class attributes; those take precedence over the values here.
"""

import os
import threading

from pydantic import BaseModel, Field, ValidationError, model_validator

from .constants import (
    DEFAULT_BLOB_DATABASE,
    DEFAULT_DATABASE,
    DEFAULT_MAX_POOL_SIZE,
    DEFAULT_MIN_POOL_SIZE,
    DEFAULT_MONGO_URI,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
)
from .exceptions import ConfigurationError


class StoreSettings(BaseModel):
    """
    Store connection settings.

    Example:
        # Using environment variables
        settings = StoreSettings.from_env()

        # Or using direct parameters
        settings = StoreSettings(mongo_uri="mongodb://mongo:27017", db_name="shop")
    """

    mongo_uri: str = Field(DEFAULT_MONGO_URI, description="MongoDB connection URI")
    db_name: str = Field(DEFAULT_DATABASE, min_length=1, description="Document database name")
    blob_db_name: str = Field(
        DEFAULT_BLOB_DATABASE, min_length=1, description="Database of the default blob bucket"
    )
    max_pool_size: int = Field(DEFAULT_MAX_POOL_SIZE, ge=1, description="Maximum pool size")
    min_pool_size: int = Field(DEFAULT_MIN_POOL_SIZE, ge=0, description="Minimum pool size")
    server_selection_timeout_ms: int = Field(
        DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
        ge=1000,
        description="Server selection timeout in milliseconds",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "StoreSettings":
        if self.min_pool_size > self.max_pool_size:
            raise ValueError(
                f"min_pool_size ({self.min_pool_size}) cannot be greater than "
                f"max_pool_size ({self.max_pool_size})"
            )
        return self

    @classmethod
    def from_env(cls) -> "StoreSettings":
        """
        Build settings from environment variables.

        Unset variables fall back to the defaults in ``constants``.

        Raises:
            ConfigurationError: If a variable holds an invalid value
        """
        env_map = {
            "mongo_uri": "MONGO_URI",
            "db_name": "DB_NAME",
            "blob_db_name": "GRIDFS_DB_NAME",
            "max_pool_size": "MONGO_MAX_POOL_SIZE",
            "min_pool_size": "MONGO_MIN_POOL_SIZE",
            "server_selection_timeout_ms": "MONGO_SERVER_SELECTION_TIMEOUT_MS",
        }
        values = {field: os.getenv(var) for field, var in env_map.items() if os.getenv(var)}
        try:
            return cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            key = str(first["loc"][0]) if first.get("loc") else None
            raise ConfigurationError(
                f"Invalid store configuration: {first['msg']}",
                config_key=env_map.get(key, key),
                config_value=values.get(key) if key else None,
            ) from e


_settings: StoreSettings | None = None
_settings_lock = threading.Lock()


def get_settings() -> StoreSettings:
    """Get the process-wide settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        with _settings_lock:
            if _settings is None:
                _settings = StoreSettings.from_env()
    return _settings


def configure(settings: StoreSettings) -> None:
    """
    Replace the process-wide settings.

    Only bindings resolved after this call see the new values.
    """
    global _settings
    with _settings_lock:
        _settings = settings
