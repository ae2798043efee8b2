"""
habitquest.services.repair_service — Drift Repair
==================================================

Applies the integrity checker's warning-class findings back to storage.

How it works:
    1. Run the integrity analysis for the user.
    2. Merge the patches of all warnings per entity (one write per entity).
    3. Write each patch; a character is re-read and re-checked inside the
       retried closure so the level write is guarded by its version.
    4. Error-class findings (structural corruption) are counted and left
       for an administrator.

Idempotent: once repaired, the analysis finds no warnings, so a second run
performs zero writes.  A write that fails leaves its entity untouched and
does not stop the others; the call then raises :class:`RepairIncompleteError`
carrying the full :class:`RepairResult`.

A caller that gives up on a repair sets the optional ``cancel`` event.  It
is checked between entity writes, so the write in progress completes and
the result returned lists exactly what was written, with ``cancelled`` set.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from habitquest.constants import level_for_experience
from habitquest.errors import (
    NotFoundError,
    RepairIncompleteError,
    StorageError,
    ValidationError,
)
from habitquest.schemas import CharacterRecord, parse_record
from habitquest.services.context import ServiceContext
from habitquest.services.integrity_service import Finding, analyze

logger = logging.getLogger(__name__)


@dataclass
class RepairResult:
    user_id: str
    writes: list[dict[str, Any]] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    unrepaired_errors: int = 0
    dry_run: bool = False
    cancelled: bool = False

    @property
    def changed(self) -> int:
        return len(self.writes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "changed": self.changed,
            "writes": [
                {**w, "patch": {k: _jsonable(v) for k, v in w["patch"].items()}}
                for w in self.writes
            ],
            "failures": list(self.failures),
            "unrepaired_errors": self.unrepaired_errors,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "timestamp": datetime.now(UTC).isoformat(),
        }


def _jsonable(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def plan_repairs(warnings: list[Finding]) -> dict[tuple[str, str], dict[str, Any]]:
    """Merge warning patches into one patch per (entity_type, entity_id)."""
    plan: dict[tuple[str, str], dict[str, Any]] = {}
    for finding in warnings:
        if finding.patch is None or finding.entity_id is None:
            continue
        plan.setdefault((finding.entity_type, finding.entity_id), {}).update(finding.patch)
    return plan


def _repair_character_level(ctx: ServiceContext, character_id: str) -> dict[str, Any] | None:
    """Fresh read → recompute → versioned write.  None if already correct."""
    character = parse_record(CharacterRecord, ctx.store.get_character_by_id(character_id))
    expected = level_for_experience(character.experience, ctx.config.xp_per_level)
    if character.level == expected:
        return None
    patch = {"level": expected}
    ctx.store.update_character(character_id, patch, expected_version=character.version)
    return patch


def _apply(
    ctx: ServiceContext, entity_type: str, entity_id: str, patch: dict[str, Any],
) -> dict[str, Any] | None:
    if entity_type == "character":
        return ctx.retry.call(_repair_character_level, ctx, entity_id)
    if entity_type == "habit":
        ctx.retry.call(ctx.store.update_habit, entity_id, patch)
        return patch
    if entity_type == "goal":
        ctx.retry.call(ctx.store.update_goal, entity_id, patch)
        return patch
    raise ValueError(f"No repair writer for entity type {entity_type!r}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def repair(
    ctx: ServiceContext,
    user_id: str,
    *,
    dry_run: bool = False,
    cancel: threading.Event | None = None,
) -> RepairResult:
    """Overwrite drifted fields with their canonical values.

    Parameters
    ----------
    dry_run : Compute the writes without performing them.
    cancel : When set, stop before the next entity write and return the
        partial result with ``cancelled=True``.

    Raises
    ------
    StorageError
        If the user's records could not be loaded.
    RepairIncompleteError
        If at least one entity write failed; ``exc.result`` lists them.
    """
    with ctx.monitor.track("repair"):
        report = analyze(ctx, user_id)
        result = RepairResult(
            user_id=user_id,
            unrepaired_errors=len(report.errors),
            dry_run=dry_run,
        )

        for (entity_type, entity_id), patch in plan_repairs(report.warnings).items():
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            if dry_run:
                result.writes.append(
                    {"entity_type": entity_type, "entity_id": entity_id, "patch": patch}
                )
                continue
            try:
                written = _apply(ctx, entity_type, entity_id, patch)
            except (StorageError, NotFoundError, ValidationError) as exc:
                logger.warning(
                    "Repair of %s %s for user %s failed: %s",
                    entity_type, entity_id, user_id, exc,
                )
                result.failures.append({
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "error": f"{type(exc).__name__}: {exc}",
                })
                continue
            if written is not None:
                result.writes.append(
                    {"entity_type": entity_type, "entity_id": entity_id, "patch": written}
                )

    if result.cancelled:
        logger.warning(
            "Repair for user %s cancelled after %d writes", user_id, result.changed,
        )
    if dry_run:
        logger.info("Repair dry run for user %s: %d planned writes", user_id, result.changed)
    elif result.writes:
        logger.warning(
            "Repair for user %s: corrected %d entities: %s",
            user_id, result.changed, result.writes,
        )
    else:
        logger.info("Repair for user %s: nothing to change", user_id)
    if result.unrepaired_errors:
        logger.warning(
            "Repair for user %s left %d structural errors for manual review",
            user_id, result.unrepaired_errors,
        )

    if result.failures:
        raise RepairIncompleteError(
            f"Repair for user {user_id} failed on {len(result.failures)} entities",
            result,
        )
    return result
