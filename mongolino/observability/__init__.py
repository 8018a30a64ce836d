"""
Observability components.

Provides structured logging, metrics collection and the error channel for
failures of background operations.
"""

from .errors import add_error_handler, remove_error_handler, report_error
from .logging import (
    ContextualLoggerAdapter,
    get_logger,
    get_store_context,
    log_operation,
    store_context,
)
from .metrics import (
    MetricsCollector,
    OperationMetrics,
    get_metrics_collector,
    record_operation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "OperationMetrics",
    "get_metrics_collector",
    "record_operation",
    # Logging
    "store_context",
    "get_store_context",
    "ContextualLoggerAdapter",
    "get_logger",
    "log_operation",
    # Error channel
    "add_error_handler",
    "remove_error_handler",
    "report_error",
]
