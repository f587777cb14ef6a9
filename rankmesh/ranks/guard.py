"""
Configuration Guard

Pins (min_score, max_score, branch_factor) to a collection. The first
engine to touch a collection writes the meta document with set-on-insert
semantics; every later engine instance compares against it once and
fails fast on any difference, because buckets written under another
topology would be read with the wrong ranges.

State machine (per instance, never shared):

    UNINITIALIZED --ensure()--> VALIDATED --first operation--> ACTIVE
          |
          +--mismatch--> FAILED   (terminal; the same error is re-raised)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from rankmesh.core import constants as C
from rankmesh.core.config import RankConfig
from rankmesh.core.errors import (
    ConfigurationMismatchError,
    StorageError,
    ValidationError,
)
from rankmesh.storage.protocols import DocumentStore

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    VALIDATED = "validated"
    ACTIVE = "active"
    FAILED = "failed"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ConfigurationGuard:
    """Argument checks plus one-time meta document validation."""

    __slots__ = ("_store", "_config", "_state", "_failure")

    def __init__(self, store: DocumentStore, config: RankConfig) -> None:
        self._store = store
        self._config = config
        self._state = EngineState.UNINITIALIZED
        self._failure: Optional[ConfigurationMismatchError] = None

    @property
    def state(self) -> EngineState:
        return self._state

    def mark_active(self) -> None:
        if self._state == EngineState.VALIDATED:
            self._state = EngineState.ACTIVE

    def check_score(self, score: Any) -> None:
        if not _is_int(score):
            raise ValidationError.not_an_integer("score", score)
        if score < self._config.min_score or score > self._config.max_score:
            raise ValidationError.score_out_of_range(
                score, self._config.min_score, self._config.max_score
            )

    def check_rank(self, rank: Any) -> None:
        if not _is_int(rank):
            raise ValidationError.not_an_integer("rank", rank)
        if rank < 1:
            raise ValidationError.rank_out_of_range(rank)

    async def ensure(
        self,
        *,
        score: Any = _UNSET,
        rank: Any = _UNSET,
    ) -> None:
        """
        Validate arguments (no I/O), then the collection meta (once).

        Raises:
            ValidationError: Bad score or rank.
            ConfigurationMismatchError: Meta document disagrees.
            StorageError: Meta document could not be read or written.
        """
        if rank is not _UNSET:
            self.check_rank(rank)
        if score is not _UNSET:
            self.check_score(score)

        if self._state == EngineState.FAILED:
            raise self._failure
        if self._state != EngineState.UNINITIALIZED:
            return

        await self._validate_meta()

    async def _validate_meta(self) -> None:
        requested = self._config.meta_values()
        result = await self._store.set_on_insert(
            self._config.namespace,
            C.META_DOCUMENT_ID,
            requested,
        )
        if result.is_err():
            raise StorageError.operation_failed("set_on_insert", result.error)

        stored = result.unwrap()
        for name in (C.META_MIN_SCORE, C.META_MAX_SCORE, C.META_BRANCH_FACTOR):
            if stored.get(name) != requested[name]:
                self._failure = ConfigurationMismatchError.for_field(
                    name, stored.get(name), requested[name]
                )
                self._state = EngineState.FAILED
                logger.error(
                    "Rank configuration mismatch",
                    extra={
                        "namespace": self._config.namespace,
                        "field": name,
                        "existing": stored.get(name),
                        "requested": requested[name],
                    },
                )
                raise self._failure

        self._state = EngineState.VALIDATED
        logger.info(
            "Rank configuration validated",
            extra={"namespace": self._config.namespace, **requested},
        )
