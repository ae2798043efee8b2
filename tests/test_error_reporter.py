"""
tests/test_error_reporter.py — Bounded Error Reporter
======================================================
"""

from __future__ import annotations

import asyncio

from habitquest.errors import StorageError
from habitquest.services.error_reporter import ErrorReport, ErrorReporter


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    return asyncio.run(coro)


class CollectingSink:
    def __init__(self):
        self.batches: list[list[ErrorReport]] = []

    async def __call__(self, reports):
        self.batches.append(list(reports))


def _report(n: int = 0) -> ErrorReport:
    return ErrorReport.from_exception("scan", StorageError(f"fail {n}"), user_id=f"u{n}")


class TestErrorReport:
    def test_from_exception(self):
        report = _report(3)
        assert report.operation == "scan"
        assert report.error_type == "StorageError"
        assert report.message == "fail 3"
        assert report.to_dict()["user_id"] == "u3"


class TestErrorReporter:
    def test_drain_once_delivers_batch(self):
        async def scenario():
            sink = CollectingSink()
            reporter = ErrorReporter(sink, maxsize=10)
            for n in range(3):
                assert reporter.report(_report(n))
            assert reporter.pending == 3
            assert await reporter.drain_once() == 3
            return sink, reporter

        sink, reporter = run_async(scenario())
        assert len(sink.batches) == 1
        assert [r.user_id for r in sink.batches[0]] == ["u0", "u1", "u2"]
        assert reporter.delivered == 3
        assert reporter.pending == 0

    def test_full_queue_drops_and_counts(self):
        async def scenario():
            reporter = ErrorReporter(CollectingSink(), maxsize=2)
            accepted = [reporter.report(_report(n)) for n in range(5)]
            return reporter, accepted

        reporter, accepted = run_async(scenario())
        assert accepted == [True, True, False, False, False]
        assert reporter.dropped == 3

    def test_background_task_drains(self):
        async def scenario():
            sink = CollectingSink()
            reporter = ErrorReporter(sink, interval=0.01)
            reporter.start()
            reporter.report(_report())
            await asyncio.sleep(0.05)
            delivered = reporter.delivered
            await reporter.stop()
            return delivered

        assert run_async(scenario()) == 1

    def test_stop_flushes_remaining(self):
        async def scenario():
            sink = CollectingSink()
            reporter = ErrorReporter(sink, interval=60)
            reporter.start()
            reporter.report(_report())
            await reporter.stop()
            return sink

        sink = run_async(scenario())
        assert sum(len(b) for b in sink.batches) == 1

    def test_failing_sink_does_not_raise(self):
        async def broken(reports):
            raise ConnectionError("sink offline")

        async def scenario():
            reporter = ErrorReporter(broken)
            reporter.report(_report())
            return await reporter.drain_once(), reporter

        delivered, reporter = run_async(scenario())
        assert delivered == 0
        assert reporter.delivered == 0
