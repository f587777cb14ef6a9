"""
Core Type Definitions for rankmesh

Result/Either monad used by every storage backend so that store failures
travel as values until the rank layer decides to raise.

Design Principles:
- Store calls never raise for expected failures (they return Err)
- Callers check is_ok()/is_err() before unwrap()
- Isolation levels are shared between config and storage layers

Complexity: O(1) for all type operations
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Generic, Literal, TypeVar, Union

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Success variant of Result."""

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result.

    Storage backends carry a human-readable message in `error`;
    the rank layer turns it into a StorageError.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Unwrapping an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# ISOLATION LEVEL
# =============================================================================
class IsolationLevel(Enum):
    """
    Transaction isolation requested from the transaction runner.

    Backends that support a single level (Redis WATCH/MULTI) accept
    any value and run with their native guarantees.
    """
    READ_COMMITTED = auto()
    SNAPSHOT = auto()
    SERIALIZABLE = auto()

    @classmethod
    def parse(cls, name: str) -> IsolationLevel:
        """Parse case-insensitive level name (e.g. from environment)."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown isolation level: {name!r}") from None


__all__ = [
    "Ok",
    "Err",
    "Result",
    "IsolationLevel",
]
