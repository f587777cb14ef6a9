"""
Error Hierarchy for rankmesh

Storage backends report failures as Err values; the rank layer raises
the exceptions defined here and never catches them again. Every error
propagates unmodified to the caller of the RankEngine.

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause for root cause analysis
- Context dict with the offending values

Usage:
    try:
        await engine.remove_score(42)
    except NotFoundError:
        ...
    except ConfigurationMismatchError as e:
        print(e.context["field"])
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Storage errors
    - 2xxx: Rank validation errors
    - 3xxx: Rank lookup errors
    - 6xxx: Reliability errors
    """

    # Storage errors (1xxx)
    STORAGE_OPERATION_FAILED = 1001
    STORAGE_WRITE_CONFLICT = 1004

    # Validation errors (2xxx)
    RANK_INVALID_ARGUMENT = 2001
    RANK_CONFIGURATION_MISMATCH = 2002

    # Lookup errors (3xxx)
    RANK_SCORE_NOT_FOUND = 3004

    # Reliability errors (6xxx)
    RELIABILITY_RETRY_EXHAUSTED = 6002


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass(eq=False)
class RankMeshError(Exception):
    """
    Base class for all rankmesh errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Wall-clock timestamp in nanoseconds
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp_ns: int = field(default_factory=time.time_ns)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.cause is not None:
            self.__cause__ = self.cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_ns": self.timestamp_ns,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================
@dataclass(eq=False)
class ValidationError(RankMeshError):
    """
    Rejected request arguments.

    Always raised before any I/O takes place.
    """

    @classmethod
    def rank_out_of_range(cls, rank: Any) -> ValidationError:
        return cls(
            code=ErrorCode.RANK_INVALID_ARGUMENT,
            message="Rank must be >= 1",
            context={"rank": rank},
        )

    @classmethod
    def score_out_of_range(
        cls,
        score: Any,
        min_score: int,
        max_score: int,
    ) -> ValidationError:
        return cls(
            code=ErrorCode.RANK_INVALID_ARGUMENT,
            message=f"Score must be >= {min_score} and <= {max_score}",
            context={"score": score, "min_score": min_score, "max_score": max_score},
        )

    @classmethod
    def not_an_integer(cls, name: str, value: Any) -> ValidationError:
        return cls(
            code=ErrorCode.RANK_INVALID_ARGUMENT,
            message=f"{name.capitalize()} must be an integer, got {type(value).__name__}",
            context={name: repr(value)},
        )


@dataclass(eq=False)
class ConfigurationMismatchError(RankMeshError):
    """
    Persisted meta document disagrees with the requested configuration.

    Fatal for the engine instance that raised it: the instance stays
    failed and must be discarded.
    """

    @classmethod
    def for_field(
        cls,
        field_name: str,
        existing: Any,
        requested: Any,
    ) -> ConfigurationMismatchError:
        return cls(
            code=ErrorCode.RANK_CONFIGURATION_MISMATCH,
            message=(
                f"{field_name} mismatch with existing data. "
                f"Existing {field_name} is {existing}, current {field_name} is {requested}"
            ),
            context={"field": field_name, "existing": existing, "requested": requested},
        )


# =============================================================================
# LOOKUP ERRORS
# =============================================================================
@dataclass(eq=False)
class NotFoundError(RankMeshError):
    """Score is not tracked; no counter was modified."""

    @classmethod
    def no_such_score(cls, score: int) -> NotFoundError:
        return cls(
            code=ErrorCode.RANK_SCORE_NOT_FOUND,
            message=f"No such score: {score}",
            context={"score": score},
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass(eq=False)
class StorageError(RankMeshError):
    """A document store call returned Err."""

    @classmethod
    def operation_failed(
        cls,
        operation: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_OPERATION_FAILED,
            message=f"Storage operation '{operation}' failed: {reason}",
            cause=cause,
            context={"operation": operation, "reason": reason},
        )


@dataclass(eq=False)
class WriteConflictError(StorageError):
    """
    Optimistic transaction lost a race on one of its read keys.

    Retried by the transaction runner; callers only see it wrapped in
    TransactionExhaustedError.
    """

    @classmethod
    def on_key(cls, key: str) -> WriteConflictError:
        return cls(
            code=ErrorCode.STORAGE_WRITE_CONFLICT,
            message=f"Write conflict on key: {key}",
            context={"key": key},
        )


# =============================================================================
# RELIABILITY ERRORS
# =============================================================================
@dataclass(eq=False)
class TransactionExhaustedError(RankMeshError):
    """Conflict retry budget exceeded; nothing was committed."""

    @classmethod
    def retry_exhausted(
        cls,
        max_retry: int,
        last_error: Optional[BaseException] = None,
    ) -> TransactionExhaustedError:
        return cls(
            code=ErrorCode.RELIABILITY_RETRY_EXHAUSTED,
            message=f"Transaction aborted with a retry of {max_retry} times.",
            cause=last_error,
            context={
                "max_retry": max_retry,
                "last_error": str(last_error) if last_error else None,
            },
        )


__all__ = [
    "ErrorCode",
    "RankMeshError",
    "ValidationError",
    "ConfigurationMismatchError",
    "NotFoundError",
    "StorageError",
    "WriteConflictError",
    "TransactionExhaustedError",
]
