"""
Retry Policy: Exponential Backoff with Jitter

Used by the transaction runners between write-conflict retries:
- Exponential backoff: base_delay_ms x exponential_base^n, capped
- Full jitter: random(0, backoff) so colliding writers spread out
- Retry budget: max_retry (-1 = unbounded)
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional

from rankmesh.core import constants as C
from rankmesh.core.errors import TransactionExhaustedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration for conflict retries."""

    base_delay_ms: float = C.CONFLICT_RETRY_BASE_MS
    max_delay_ms: float = C.CONFLICT_RETRY_MAX_MS
    exponential_base: float = C.CONFLICT_RETRY_EXPONENTIAL_BASE
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays must be >= 0")
        if self.exponential_base < 1:
            raise ValueError(f"exponential_base must be >= 1, got {self.exponential_base}")

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def immediate(cls) -> RetryPolicy:
        """Retry without sleeping (tests, single-process bulk loads)."""
        return cls(base_delay_ms=0, max_delay_ms=0, jitter=False)


def calculate_backoff(
    attempt: int,
    base_delay_ms: float,
    max_delay_ms: float,
    exponential_base: float,
    jitter: bool,
) -> float:
    """
    Calculate backoff delay in milliseconds.

    Full jitter: random(0, min(cap, base * exponential_base^attempt))
    """
    delay = min(max_delay_ms, base_delay_ms * (exponential_base ** attempt))

    if jitter:
        delay = random.uniform(0, delay)

    return delay


class RetryContext:
    """
    Tracks the retries of one transaction.

    Usage:
        ctx = RetryContext(policy, max_retry=3)
        while True:
            try:
                return await attempt()
            except WriteConflictError as e:
                await ctx.fail(e)   # raises once the budget is spent
    """

    __slots__ = ("_policy", "_max_retry", "_retries")

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        max_retry: int = C.UNBOUNDED_RETRY,
    ) -> None:
        self._policy = policy or RetryPolicy.default()
        self._max_retry = max_retry
        self._retries = 0

    @property
    def retries(self) -> int:
        """Number of retries performed so far."""
        return self._retries

    def exhausted(self) -> bool:
        return 0 <= self._max_retry < self._retries

    async def fail(self, error: BaseException) -> None:
        """
        Record a conflict and wait for the backoff delay.

        Raises:
            TransactionExhaustedError: If another attempt would exceed max_retry.
        """
        self._retries += 1

        if self.exhausted():
            raise TransactionExhaustedError.retry_exhausted(self._max_retry, error)

        delay = calculate_backoff(
            attempt=self._retries - 1,
            base_delay_ms=self._policy.base_delay_ms,
            max_delay_ms=self._policy.max_delay_ms,
            exponential_base=self._policy.exponential_base,
            jitter=self._policy.jitter,
        )
        logger.debug(f"Retrying transaction in {delay:.2f}ms (retry {self._retries})")
        await asyncio.sleep(delay / 1000)
