"""
Custom exceptions for Mongolino.

Every failure raised by a store operation is translated into one of these
types. They all derive from MongolinoError, which keeps compatibility with
RuntimeError.
"""

from typing import Any, Dict, Optional


class MongolinoError(RuntimeError):
    """
    Base exception for Mongolino errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (collection,
                 operation, etc.)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class ConnectivityError(MongolinoError):
    """
    Raised when the store target is unreachable or the connection was lost.

    Never retried internally. Re-invoking the same operation is safe; a
    collection binding that failed to resolve is attempted again on the
    next call.

    Attributes:
        mongo_uri: Connection target (if available)
    """

    def __init__(
        self,
        message: str,
        mongo_uri: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if mongo_uri:
            context["mongo_uri"] = mongo_uri
        super().__init__(message, context=context)
        self.mongo_uri = mongo_uri


class FormatError(MongolinoError, ValueError):
    """
    Raised when identifier text is not a valid 24 character hex ObjectId.

    Attributes:
        value: The rejected value
    """

    def __init__(self, message: str, value: Any = None, context: Optional[Dict[str, Any]] = None) -> None:
        context = context or {}
        if value is not None:
            context["value"] = value
        super().__init__(message, context=context)
        self.value = value


class IndexConflictError(MongolinoError):
    """
    Raised when an index cannot be created because an incompatible index
    with the same name or keys already exists.

    This indicates configuration drift and requires operator intervention.

    Attributes:
        index_keys: Keys of the index that was requested
        code: Server error code (if available)
    """

    def __init__(
        self,
        message: str,
        index_keys: Optional[Any] = None,
        code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if index_keys is not None:
            context["index_keys"] = index_keys
        if code is not None:
            context["code"] = code
        super().__init__(message, context=context)
        self.index_keys = index_keys
        self.code = code


class StoreError(MongolinoError):
    """Raised for any other failure reported by the store or driver."""


class SelectorError(MongolinoError, ValueError):
    """
    Raised when a selector cannot be applied to a document type.

    Unknown attributes, the derived full-text attribute used as an update
    target, and selectors used in the wrong role (an increment as a filter,
    for example) all end up here.
    """


class UnsavedDocumentError(MongolinoError, ValueError):
    """Raised when an id-addressed operation receives a document without an id."""


class ConfigurationError(MongolinoError):
    """
    Raised when configuration is invalid or missing.

    Attributes:
        config_key: Configuration key that caused the error (if available)
        config_value: Configuration value that caused the error (if available)
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value
        super().__init__(message, context=context)
        self.config_key = config_key
        self.config_value = config_value
