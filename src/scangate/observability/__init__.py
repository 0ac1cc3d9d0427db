"""Structured logging for pipeline runs."""

from scangate.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    correlation_scope,
    redact_text,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "correlation_scope",
    "redact_text",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
