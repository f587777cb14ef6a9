"""
Configuration Management for rankmesh

Design:
- Immutable after validation
- Fail-fast on invalid configuration (ValueError from __post_init__)
- Environment overrides via from_env()

The (min_score, max_score, branch_factor) triple is pinned to the
backing collection by the configuration guard; everything else may
differ between engine instances sharing a collection.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from rankmesh.core import constants as C
from rankmesh.core.types import Err, IsolationLevel, Ok, Result


def _require_int(name: str, value: Any) -> None:
    # bool is an int subclass but never a valid score bound
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class TransactionConfig:
    """
    Options handed to the transaction runner for every mutation chain.

    Attributes:
        max_retry: Conflict retries before TransactionExhaustedError.
            -1 retries forever, 0 allows a single attempt.
        isolation: Isolation level requested from the backend.
    """

    max_retry: int = C.UNBOUNDED_RETRY
    isolation: IsolationLevel = IsolationLevel.SERIALIZABLE

    def __post_init__(self) -> None:
        _require_int("max_retry", self.max_retry)
        if self.max_retry < C.UNBOUNDED_RETRY:
            raise ValueError(f"max_retry must be >= -1, got {self.max_retry}")


@dataclass(frozen=True)
class RankConfig:
    """
    Rank engine configuration.

    Attributes:
        min_score: Lowest trackable score (inclusive).
        max_score: Highest trackable score (inclusive).
        branch_factor: Maximum children per bucket, >= 2.
        skip_transaction: Apply chain updates bucket by bucket without a
            cross-bucket transaction. Faster for bulk loads; a crash in the
            middle of a chain leaves ancestor sums inconsistent.
        transaction: Retry/isolation options for the transaction runner.
        collection_name: Collection holding buckets and the meta document.
        db_name: Database (key namespace) of the collection.

    Example:
        >>> config = RankConfig(min_score=1, max_score=100, branch_factor=8)
        >>> config.namespace
        'rankmesh:rank'
    """

    min_score: int
    max_score: int
    branch_factor: int
    skip_transaction: bool = False
    transaction: TransactionConfig = field(default_factory=TransactionConfig)
    collection_name: str = C.DEFAULT_COLLECTION_NAME
    db_name: str = C.DEFAULT_DB_NAME

    def __post_init__(self) -> None:
        _require_int("min_score", self.min_score)
        _require_int("max_score", self.max_score)
        _require_int("branch_factor", self.branch_factor)

        if self.min_score > self.max_score:
            raise ValueError(
                f"min_score must be <= max_score, got {self.min_score} > {self.max_score}"
            )
        if self.branch_factor < C.MIN_BRANCH_FACTOR:
            raise ValueError(
                f"branch_factor must be >= {C.MIN_BRANCH_FACTOR}, got {self.branch_factor}"
            )
        if not self.collection_name:
            raise ValueError("collection_name must not be empty")
        if not self.db_name:
            raise ValueError("db_name must not be empty")

    @property
    def namespace(self) -> str:
        """Collection key passed to the document store."""
        return f"{self.db_name}{C.REDIS_KEY_SEPARATOR}{self.collection_name}"

    @property
    def score_range(self) -> int:
        """Number of distinct scores in the domain."""
        return self.max_score - self.min_score + 1

    def meta_values(self) -> dict[str, int]:
        """Values pinned in the collection's meta document."""
        return {
            C.META_MIN_SCORE: self.min_score,
            C.META_MAX_SCORE: self.max_score,
            C.META_BRANCH_FACTOR: self.branch_factor,
        }

    @classmethod
    def from_env(
        cls,
        prefix: str = "RANKMESH",
        environ: Optional[dict[str, str]] = None,
    ) -> Result[RankConfig, str]:
        """
        Load configuration from environment variables.

        Environment Variables:
        - {prefix}_MIN_SCORE, {prefix}_MAX_SCORE, {prefix}_BRANCH_FACTOR (required)
        - {prefix}_SKIP_TRANSACTION: true/false (default: false)
        - {prefix}_MAX_RETRY: conflict retries, -1 unbounded (default: -1)
        - {prefix}_ISOLATION: read_committed|snapshot|serializable
        - {prefix}_COLLECTION, {prefix}_DB
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            return env.get(f"{prefix}_{name}", default)

        try:
            missing = [
                name for name in ("MIN_SCORE", "MAX_SCORE", "BRANCH_FACTOR")
                if get(name) is None
            ]
            if missing:
                return Err(
                    "Configuration error: missing "
                    + ", ".join(f"{prefix}_{name}" for name in missing)
                )

            transaction = TransactionConfig(
                max_retry=int(get("MAX_RETRY", str(C.UNBOUNDED_RETRY))),
                isolation=IsolationLevel.parse(get("ISOLATION", "serializable")),
            )

            return Ok(cls(
                min_score=int(get("MIN_SCORE")),
                max_score=int(get("MAX_SCORE")),
                branch_factor=int(get("BRANCH_FACTOR")),
                skip_transaction=get("SKIP_TRANSACTION", "false").lower() in ("1", "true", "yes"),
                transaction=transaction,
                collection_name=get("COLLECTION", C.DEFAULT_COLLECTION_NAME),
                db_name=get("DB", C.DEFAULT_DB_NAME),
            ))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")
