"""Retry policy with exponential backoff and jitter."""

from __future__ import annotations

import random
from dataclasses import dataclass

from object_transfer.domain.exceptions import InvalidArgumentError, TransferError


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff schedule for transient part failures.

    ``max_retries`` counts retries after the first attempt, so the default
    of 3 allows up to 4 attempts per part.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any single delay.
        multiplier: Growth factor between consecutive delays.
        jitter: Fraction of the delay randomized in both directions.
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 20.0
    multiplier: float = 2.0
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise InvalidArgumentError("max_retries cannot be negative")
        if self.base_delay < 0 or self.max_delay < 0:
            raise InvalidArgumentError("Retry delays cannot be negative")
        if self.multiplier < 1:
            raise InvalidArgumentError("Retry multiplier must be at least 1")
        if not 0 <= self.jitter <= 1:
            raise InvalidArgumentError("Retry jitter must be within [0, 1]")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def next_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay to wait after the given failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed.
            rng: Random source for jitter; the module RNG when None.

        Returns:
            Delay in seconds, within ``[0, max_delay]``.
        """
        if attempt < 1:
            raise InvalidArgumentError(f"Attempt numbers start at 1, got {attempt}")
        delay = min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))
        if self.jitter:
            sample = (rng or random).random()
            delay *= 1 + self.jitter * (2 * sample - 1)
        return max(0.0, min(delay, self.max_delay))

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Whether another attempt follows the failed ``attempt``."""
        if attempt >= self.max_attempts:
            return False
        return isinstance(error, TransferError) and error.retryable
