"""
Observability module: structured logging.
"""

from rankmesh.observability.logging import (
    JsonFormatter,
    LogContext,
    LogLevel,
    current_context,
    log_context,
    setup_logging,
)

__all__ = [
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "current_context",
    "log_context",
    "setup_logging",
]
