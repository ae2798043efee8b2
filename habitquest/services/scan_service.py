"""
habitquest.services.scan_service — Batch Integrity Scans
=========================================================

Checks (and optionally repairs) many users concurrently.

- Each user is an independent unit of work run on a worker thread via
  :func:`~habitquest.database.engine.run_db`.
- An ``asyncio.Semaphore`` bounds how many users are in flight.
- ``asyncio.wait_for`` caps the time spent per user.  The worker thread
  cannot be interrupted, so on timeout its cancel event is set and it stops
  before its next entity write.  The user is reported as timed out, any
  repairs it finished are still recorded, and its semaphore slot is only
  released once the worker has actually stopped.
- Failures go to an optional :class:`ErrorReporter`; they never abort the
  scan of other users.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from habitquest.database.engine import run_db
from habitquest.errors import HabitQuestError, RepairIncompleteError
from habitquest.services.context import ServiceContext
from habitquest.services.error_reporter import ErrorReport, ErrorReporter
from habitquest.services.integrity_service import IntegrityReport, check
from habitquest.services.repair_service import RepairResult, repair

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    reports: dict[str, IntegrityReport] = field(default_factory=dict)
    repairs: dict[str, RepairResult] = field(default_factory=dict)
    timed_out: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def checked(self) -> int:
        return len(self.reports)

    @property
    def valid(self) -> int:
        return sum(1 for r in self.reports.values() if r.is_valid)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "valid": self.valid,
            "repaired": sum(1 for r in self.repairs.values() if r.changed),
            "timed_out": sorted(self.timed_out),
            "failed": dict(sorted(self.failed.items())),
            "reports": {uid: r.to_dict() for uid, r in sorted(self.reports.items())},
            "repairs": {uid: r.to_dict() for uid, r in sorted(self.repairs.items())},
        }


def _process_user(
    ctx: ServiceContext, user_id: str, do_repair: bool, cancel: threading.Event,
) -> tuple[IntegrityReport, RepairResult | None]:
    report = check(ctx, user_id)
    if do_repair and report.warnings and not cancel.is_set():
        return report, repair(ctx, user_id, cancel=cancel)
    return report, None


async def _finish_abandoned(user_id: str, worker: asyncio.Future) -> RepairResult | None:
    """Wait for a timed-out worker to stop and return the repairs it made."""
    try:
        _, repaired = await worker
    except RepairIncompleteError as exc:
        return exc.result
    except HabitQuestError as exc:
        logger.warning("Abandoned scan of user %s failed: %s", user_id, exc)
        return None
    return repaired


async def scan_users(
    ctx: ServiceContext,
    user_ids: list[str] | None = None,
    *,
    repair: bool = False,
    concurrency: int | None = None,
    timeout: float | None = None,
    reporter: ErrorReporter | None = None,
) -> ScanSummary:
    """Check every user in *user_ids* (default: all known users).

    Parameters
    ----------
    repair : Also repair users whose report has warnings.
    concurrency : Max users in flight (default ``config.scan_concurrency``).
    timeout : Seconds allowed per user (default ``config.scan_timeout_seconds``).
    reporter : Receives one :class:`ErrorReport` per failed or timed-out user.
    """
    if user_ids is None:
        user_ids = await run_db(ctx.retry.call, ctx.store.list_user_ids)

    semaphore = asyncio.Semaphore(concurrency or ctx.config.scan_concurrency)
    per_user = timeout if timeout is not None else ctx.config.scan_timeout_seconds
    summary = ScanSummary()

    def _report(user_id: str, exc: BaseException) -> None:
        if reporter is not None:
            reporter.report(ErrorReport.from_exception("scan", exc, user_id=user_id))

    async def _one(user_id: str) -> None:
        async with semaphore:
            cancel = threading.Event()
            worker = asyncio.ensure_future(
                run_db(_process_user, ctx, user_id, repair, cancel)
            )
            try:
                report, repaired = await asyncio.wait_for(asyncio.shield(worker), per_user)
            except TimeoutError as exc:
                cancel.set()
                logger.warning("Scan of user %s timed out after %.1fs", user_id, per_user)
                summary.timed_out.append(user_id)
                _report(user_id, exc)
                partial = await _finish_abandoned(user_id, worker)
                if partial is not None:
                    summary.repairs[user_id] = partial
                return
            except RepairIncompleteError as exc:
                logger.warning("Scan of user %s: %s", user_id, exc)
                summary.repairs[user_id] = exc.result
                summary.failed[user_id] = str(exc)
                _report(user_id, exc)
                return
            except HabitQuestError as exc:
                logger.warning("Scan of user %s failed: %s", user_id, exc)
                summary.failed[user_id] = f"{type(exc).__name__}: {exc}"
                _report(user_id, exc)
                return
            summary.reports[user_id] = report
            if repaired is not None:
                summary.repairs[user_id] = repaired

    await asyncio.gather(*(_one(uid) for uid in user_ids))

    logger.info(
        "Scan complete: %d checked, %d valid, %d timed out, %d failed",
        summary.checked, summary.valid, len(summary.timed_out), len(summary.failed),
    )
    return summary
