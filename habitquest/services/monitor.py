"""
habitquest.services.monitor — Operation Timing & Error Counters
================================================================

Prometheus metrics for the progression services, constructed explicitly and
handed to services through :class:`~habitquest.services.context.ServiceContext`.

Every monitor owns its own ``CollectorRegistry`` rather than registering on
the process-wide default, so each CLI run, worker and test sees only the
operations it performed.  Metrics are labelled by ``operation``:

- ``habitquest_operation_calls_total``             calls started
- ``habitquest_operation_errors_total``            calls that raised
- ``habitquest_operation_duration_seconds``        latency histogram
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)

DURATION_BUCKETS = (0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, float("inf"))


class PerformanceMonitor:
    """Per-operation latency and error metrics on a private registry."""

    def __init__(self, namespace: str = "habitquest") -> None:
        self.registry = CollectorRegistry()
        self._calls = Counter(
            "operation_calls",
            "Service operations started",
            ["operation"],
            namespace=namespace,
            registry=self.registry,
        )
        self._errors = Counter(
            "operation_errors",
            "Service operations that raised",
            ["operation"],
            namespace=namespace,
            registry=self.registry,
        )
        self._duration = Histogram(
            "operation_duration_seconds",
            "Duration of service operations in seconds",
            ["operation"],
            namespace=namespace,
            registry=self.registry,
            buckets=DURATION_BUCKETS,
        )
        self._sample_keys = {
            f"{namespace}_operation_calls_total": "calls",
            f"{namespace}_operation_errors_total": "errors",
            f"{namespace}_operation_duration_seconds_sum": "total_seconds",
        }

    def record(self, operation: str, seconds: float, *, failed: bool = False) -> None:
        """Record one finished call that was timed elsewhere."""
        self._calls.labels(operation=operation).inc()
        self._duration.labels(operation=operation).observe(seconds)
        # Creating the child makes a zero error count visible.
        errors = self._errors.labels(operation=operation)
        if failed:
            errors.inc()

    @contextmanager
    def track(self, operation: str) -> Iterator[None]:
        """Time the enclosed block; exceptions count as errors and propagate."""
        self._calls.labels(operation=operation).inc()
        start = time.perf_counter()
        try:
            with self._errors.labels(operation=operation).count_exceptions():
                yield
        finally:
            self._duration.labels(operation=operation).observe(time.perf_counter() - start)

    def snapshot(self) -> dict[str, dict[str, float | int]]:
        """Current totals per operation, read back from the registry."""
        stats: dict[str, dict[str, float]] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                key = self._sample_keys.get(sample.name)
                operation = sample.labels.get("operation")
                if key is None or operation is None:
                    continue
                stats.setdefault(operation, {})[key] = sample.value

        result: dict[str, dict[str, float | int]] = {}
        for operation in sorted(stats):
            values = stats[operation]
            calls = int(values.get("calls", 0))
            total = values.get("total_seconds", 0.0)
            result[operation] = {
                "calls": calls,
                "errors": int(values.get("errors", 0)),
                "total_seconds": round(total, 6),
                "average_seconds": round(total / calls, 6) if calls else 0.0,
            }
        return result

    def exposition(self) -> str:
        """The registry in Prometheus text format."""
        return generate_latest(self.registry).decode("utf-8")

    def reset(self) -> None:
        for metric in (self._calls, self._errors, self._duration):
            metric.clear()
        logger.debug("Performance monitor reset")
