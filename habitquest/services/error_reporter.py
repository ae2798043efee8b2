"""
habitquest.services.error_reporter — Bounded Asynchronous Error Reporting
==========================================================================

Failures seen by background work (batch scans) are handed to an
:class:`ErrorReporter` instead of being shipped inline.  Reports sit in a
bounded ``asyncio.Queue``; a drain task delivers them to a *sink* every few
seconds.  When the queue is full new reports are dropped and counted, so a
misbehaving sink can never stall or grow memory without bound.

Reporting is fire-and-forget and lives entirely outside the correctness
path: nothing in progression, check or repair waits on it.

``report()`` must be called from the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ErrorReport:
    """One captured failure."""

    operation: str
    error_type: str
    message: str
    user_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_exception(
        cls, operation: str, exc: BaseException, *, user_id: str | None = None,
    ) -> ErrorReport:
        return cls(
            operation=operation,
            error_type=type(exc).__name__,
            message=str(exc),
            user_id=user_id,
        )

    def to_dict(self) -> dict[str, str | None]:
        return {
            "operation": self.operation,
            "error_type": self.error_type,
            "message": self.message,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
        }


ErrorSink = Callable[[list[ErrorReport]], Awaitable[None]]


async def log_sink(reports: list[ErrorReport]) -> None:
    """Default sink — one warning line per report."""
    for report in reports:
        logger.warning(
            "Error report: %s in %s (user=%s): %s",
            report.error_type, report.operation, report.user_id, report.message,
        )


class ErrorReporter:
    """Bounded queue + background drain task.

    Lifecycle::

        reporter = ErrorReporter(sink, maxsize=100)
        reporter.start()
        reporter.report(ErrorReport.from_exception("check", exc))
        ...
        await reporter.stop()     # flushes what is left
    """

    def __init__(
        self,
        sink: ErrorSink = log_sink,
        *,
        maxsize: int = 100,
        interval: float = 5.0,
    ) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[ErrorReport] = asyncio.Queue(maxsize=maxsize)
        self._interval = interval
        self._drain_task: asyncio.Task | None = None
        self.dropped = 0
        self.delivered = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def report(self, report: ErrorReport) -> bool:
        """Enqueue *report*; returns False if it was dropped (queue full)."""
        try:
            self._queue.put_nowait(report)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Error report dropped (queue full): %s", report.error_type)
            return False
        return True

    async def drain_once(self) -> int:
        """Deliver everything currently queued as one batch."""
        batch: list[ErrorReport] = []
        while not self._queue.empty():
            batch.append(self._queue.get_nowait())
        if not batch:
            return 0
        try:
            await self._sink(batch)
        except Exception:
            logger.exception("Error sink failed; %d reports lost", len(batch))
            return 0
        self.delivered += len(batch)
        return len(batch)

    def start(self) -> None:
        """Start the background drain task on the running loop."""
        if self._drain_task is not None:
            return

        async def _drain_loop() -> None:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    await self.drain_once()
                except Exception:
                    logger.exception("Error reporter drain error")

        self._drain_task = asyncio.get_running_loop().create_task(
            _drain_loop(), name="error-report-drain"
        )

    async def stop(self) -> None:
        """Cancel the drain task and flush what is still queued."""
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None
        await self.drain_once()
