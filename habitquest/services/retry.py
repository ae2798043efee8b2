"""Retry logic with exponential backoff and jitter

Only transient storage failures are retried:
1. ``StorageError`` with ``retryable=True`` (including optimistic
   concurrency conflicts) is retried with exponential backoff + jitter.
2. Everything else (validation, not-found, constraint violations) is
   raised immediately.
3. When the attempt budget is spent the last StorageError propagates, so
   the caller still sees a retryable error rather than a silent drop.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from habitquest.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER = 0.1  # ±10% of the delay


def is_retryable_error(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and exc.retryable


def calculate_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff delay with jitter for the 0-indexed *attempt*.

    Formula: ``min(base_delay * 2**attempt, max_delay)`` ± 10%.
    """
    delay = min(base_delay * (2 ** attempt), max_delay)
    jitter_amount = random.uniform(-JITTER * delay, JITTER * delay)
    return max(delay + jitter_amount, 0.0)


@dataclass(frozen=True)
class RetryPolicy:
    """How hard to try before surfacing a StorageError.

    ``sleep`` is injectable so tests do not actually wait.
    """

    attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 5.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run *func*, retrying transient storage failures.

        Raises
        ------
        StorageError
            The last failure once all attempts are used.
        """
        for attempt in range(self.attempts):
            try:
                return func(*args, **kwargs)
            except StorageError as exc:
                if not is_retryable_error(exc):
                    raise
                if attempt == self.attempts - 1:
                    logger.error(
                        "All %d attempts exhausted for %s: %s",
                        self.attempts, getattr(func, "__name__", func), exc,
                    )
                    raise
                backoff = calculate_backoff(attempt, self.base_delay, self.max_delay)
                logger.warning(
                    "Attempt %d/%d of %s failed (%s); retrying in %.2fs",
                    attempt + 1, self.attempts,
                    getattr(func, "__name__", func), exc, backoff,
                )
                self.sleep(backoff)
