"""
habitquest.services.context — Injected Collaborators
=====================================================

Every service function takes a :class:`ServiceContext` as its first
argument.  It bundles the store, tuning values and the process-owned helpers
(randomness, clock, retry policy, monitor), so tests can swap any of them.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from habitquest.config import HabitQuestConfig
from habitquest.services.monitor import PerformanceMonitor
from habitquest.services.retry import RetryPolicy
from habitquest.services.store import ProgressionStore


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ServiceContext:
    store: ProgressionStore
    config: HabitQuestConfig = field(default_factory=HabitQuestConfig)
    rng: random.Random = field(default_factory=random.Random)
    clock: Callable[[], datetime] = _utcnow
    retry: RetryPolicy | None = None
    monitor: PerformanceMonitor = field(default_factory=PerformanceMonitor)

    def __post_init__(self) -> None:
        if self.retry is None:
            self.retry = RetryPolicy(
                attempts=self.config.retry_attempts,
                base_delay=self.config.retry_base_delay,
                max_delay=self.config.retry_max_delay,
            )

    def today(self) -> date:
        return self.clock().date()


def build_context(store: ProgressionStore, config: HabitQuestConfig | None = None) -> ServiceContext:
    """Production wiring: real randomness, wall clock, config-driven retries."""
    return ServiceContext(store=store, config=config or HabitQuestConfig())
