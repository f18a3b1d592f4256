"""Observability helpers: structured logging, correlation scopes, timed operations."""

from graph_dal.observability.logging import (
    JsonLineFormatter,
    LoggingConfig,
    LoggingHandle,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    shutdown_logging,
    timed_operation,
)

__all__ = [
    "JsonLineFormatter",
    "LoggingConfig",
    "LoggingHandle",
    "correlation_scope",
    "get_correlation_context",
    "setup_logging",
    "shutdown_logging",
    "timed_operation",
]
