"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for rankmesh:
- Result monad for store-level control flow
- Error hierarchy raised by the rank engine
- Configuration with validation
"""

from rankmesh.core.types import (
    Result,
    Ok,
    Err,
    IsolationLevel,
)
from rankmesh.core.errors import (
    ErrorCode,
    RankMeshError,
    ValidationError,
    ConfigurationMismatchError,
    NotFoundError,
    StorageError,
    WriteConflictError,
    TransactionExhaustedError,
)
from rankmesh.core.config import RankConfig, TransactionConfig

__all__ = [
    "Result",
    "Ok",
    "Err",
    "IsolationLevel",
    "ErrorCode",
    "RankMeshError",
    "ValidationError",
    "ConfigurationMismatchError",
    "NotFoundError",
    "StorageError",
    "WriteConflictError",
    "TransactionExhaustedError",
    "RankConfig",
    "TransactionConfig",
]
