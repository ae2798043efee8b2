"""
habitquest.services.integrity_service — Data Integrity Checker
===============================================================

Re-derives canonical state for one user's character, habits and goals from
the raw stored records and diffs it against what is stored.

How it works:
    1. Load every character, habit and goal row for the user.
    2. Parse each row against its schema; failures become error findings.
    3. Structural checks (character count, character references) produce
       **errors** — they need an administrator, repair leaves them alone.
    4. Drift checks (streaks, level, goal completion timestamp) produce
       **warnings** carrying the patch that would fix them.
    5. Recommendations are derived from which finding categories occurred.

Findings are always collected in full; nothing short-circuits.  Only a
storage failure while loading aborts the check.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from habitquest.constants import level_for_experience
from habitquest.engine.streaks import calculate_streak
from habitquest.errors import ValidationError
from habitquest.schemas import CharacterRecord, GoalRecord, HabitRecord, parse_record
from habitquest.services.context import ServiceContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Finding types
# ---------------------------------------------------------------------------
class Severity(enum.StrEnum):
    ERROR = "error"
    WARNING = "warning"


class FindingCategory(enum.StrEnum):
    CHARACTER_COUNT = "character_count"
    INVALID_RECORD = "invalid_record"
    CHARACTER_REFERENCE = "character_reference"
    GOAL_COMPLETION = "goal_completion"
    STREAK_DRIFT = "streak_drift"
    STREAK_ORDER = "streak_order"
    LEVEL_DRIFT = "level_drift"


# Category → recommendation, in the order recommendations are emitted.
RECOMMENDATIONS: dict[FindingCategory, str] = {
    FindingCategory.CHARACTER_COUNT: "Resolve missing or duplicate character records manually",
    FindingCategory.INVALID_RECORD: "Fix or remove records that fail schema validation",
    FindingCategory.CHARACTER_REFERENCE: "Reassign orphaned habits and goals to the user's character",
    FindingCategory.GOAL_COMPLETION: "Run repair to reconcile goal completion timestamps",
    FindingCategory.STREAK_DRIFT: "Run repair to recalculate habit streaks",
    FindingCategory.STREAK_ORDER: "Run repair to recalculate habit streaks",
    FindingCategory.LEVEL_DRIFT: "Run repair to recalculate character level",
}


@dataclass(frozen=True, slots=True)
class Finding:
    """One consistency problem.  Data, never raised."""

    severity: Severity
    category: FindingCategory
    entity_type: str          # "character" | "habit" | "goal" | "user"
    entity_id: str | None
    message: str
    stored: Any = None
    expected: Any = None
    patch: Mapping[str, Any] | None = None   # warning-class only

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "category": self.category.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "message": self.message,
            "stored": _jsonable(self.stored),
            "expected": _jsonable(self.expected),
        }


def _jsonable(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


@dataclass
class IntegrityReport:
    user_id: str
    errors: list[Finding] = field(default_factory=list)
    warnings: list[Finding] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors and not self.warnings

    def add(self, finding: Finding) -> None:
        if finding.severity is Severity.ERROR:
            self.errors.append(finding)
        else:
            self.warnings.append(finding)

    def categories(self) -> set[FindingCategory]:
        return {f.category for f in (*self.errors, *self.warnings)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "is_valid": self.is_valid,
            "errors": [f.to_dict() for f in self.errors],
            "warnings": [f.to_dict() for f in self.warnings],
            "recommendations": list(self.recommendations),
        }


def generate_recommendations(report: IntegrityReport) -> list[str]:
    """Deterministic: one line per category present, no duplicates."""
    present = report.categories()
    recommendations: list[str] = []
    for category, text in RECOMMENDATIONS.items():
        if category in present and text not in recommendations:
            recommendations.append(text)
    return recommendations


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------
def _invalid(entity_type: str, raw: Mapping[str, Any], exc: ValidationError) -> Finding:
    return Finding(
        severity=Severity.ERROR,
        category=FindingCategory.INVALID_RECORD,
        entity_type=entity_type,
        entity_id=exc.entity_id or raw.get("id"),
        message=str(exc),
    )


def _check_characters(
    ctx: ServiceContext, report: IntegrityReport, rows: list[dict],
) -> CharacterRecord | None:
    """Count + schema + level drift.  Returns the user's character if unique."""
    if len(rows) != 1:
        report.add(Finding(
            severity=Severity.ERROR,
            category=FindingCategory.CHARACTER_COUNT,
            entity_type="user",
            entity_id=report.user_id,
            message=f"User should have exactly one character (found {len(rows)})",
            stored=len(rows),
            expected=1,
        ))

    parsed: list[CharacterRecord] = []
    for raw in rows:
        try:
            parsed.append(parse_record(CharacterRecord, raw))
        except ValidationError as exc:
            report.add(_invalid("character", raw, exc))

    for character in parsed:
        expected = level_for_experience(character.experience, ctx.config.xp_per_level)
        if expected != character.level:
            report.add(Finding(
                severity=Severity.WARNING,
                category=FindingCategory.LEVEL_DRIFT,
                entity_type="character",
                entity_id=character.id,
                message=(
                    f"Character {character.id} level {character.level} is "
                    f"inconsistent with {character.experience} XP (expected {expected})"
                ),
                stored=character.level,
                expected=expected,
                patch={"level": expected},
            ))

    if len(rows) == 1 and len(parsed) == 1:
        return parsed[0]
    return None


def _check_habit(
    ctx: ServiceContext,
    report: IntegrityReport,
    raw: dict,
    character: CharacterRecord | None,
) -> None:
    try:
        habit = parse_record(HabitRecord, raw)
    except ValidationError as exc:
        report.add(_invalid("habit", raw, exc))
        return

    if character is not None and habit.character_id != character.id:
        report.add(Finding(
            severity=Severity.ERROR,
            category=FindingCategory.CHARACTER_REFERENCE,
            entity_type="habit",
            entity_id=habit.id,
            message=f"Habit {habit.id} has invalid character reference",
            stored=habit.character_id,
            expected=character.id,
        ))

    recomputed = calculate_streak(habit.completed_dates, habit.frequency, today=ctx.today())
    longest = max(habit.longest_streak, recomputed)
    patch = {"current_streak": recomputed, "longest_streak": longest}

    if recomputed != habit.current_streak:
        report.add(Finding(
            severity=Severity.WARNING,
            category=FindingCategory.STREAK_DRIFT,
            entity_type="habit",
            entity_id=habit.id,
            message=f"Habit {habit.id} has inconsistent current streak",
            stored=habit.current_streak,
            expected=recomputed,
            patch=patch,
        ))
    if habit.current_streak > habit.longest_streak:
        report.add(Finding(
            severity=Severity.WARNING,
            category=FindingCategory.STREAK_ORDER,
            entity_type="habit",
            entity_id=habit.id,
            message=f"Habit {habit.id} has current streak longer than longest streak",
            stored=habit.longest_streak,
            expected=longest,
            patch=patch,
        ))


def _check_goal(
    ctx: ServiceContext,
    report: IntegrityReport,
    raw: dict,
    character: CharacterRecord | None,
) -> None:
    try:
        goal = parse_record(GoalRecord, raw)
    except ValidationError as exc:
        report.add(_invalid("goal", raw, exc))
        return

    if character is not None and goal.character_id != character.id:
        report.add(Finding(
            severity=Severity.ERROR,
            category=FindingCategory.CHARACTER_REFERENCE,
            entity_type="goal",
            entity_id=goal.id,
            message=f"Goal {goal.id} has invalid character reference",
            stored=goal.character_id,
            expected=character.id,
        ))

    if goal.is_complete and goal.completed_at is None:
        now = ctx.clock()
        report.add(Finding(
            severity=Severity.WARNING,
            category=FindingCategory.GOAL_COMPLETION,
            entity_type="goal",
            entity_id=goal.id,
            message=f"Goal {goal.id} is complete but missing completion timestamp",
            stored=None,
            expected=now,
            patch={"completed_at": now},
        ))
    elif not goal.is_complete and goal.completed_at is not None:
        report.add(Finding(
            severity=Severity.WARNING,
            category=FindingCategory.GOAL_COMPLETION,
            entity_type="goal",
            entity_id=goal.id,
            message=f"Goal {goal.id} is incomplete but has completion timestamp",
            stored=goal.completed_at,
            expected=None,
            patch={"completed_at": None},
        ))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def analyze(ctx: ServiceContext, user_id: str) -> IntegrityReport:
    """Build the full report for *user_id* without logging a summary.

    Raises
    ------
    StorageError
        If the records could not be loaded within the retry budget.
    """
    characters = ctx.retry.call(ctx.store.list_characters, user_id)
    habits = ctx.retry.call(ctx.store.list_habits, user_id)
    goals = ctx.retry.call(ctx.store.list_goals, user_id)

    report = IntegrityReport(user_id=user_id)
    character = _check_characters(ctx, report, characters)
    for raw in habits:
        _check_habit(ctx, report, raw, character)
    for raw in goals:
        _check_goal(ctx, report, raw, character)

    report.recommendations = generate_recommendations(report)
    return report


def check(ctx: ServiceContext, user_id: str) -> IntegrityReport:
    """Run every integrity check for *user_id*."""
    with ctx.monitor.track("check"):
        report = analyze(ctx, user_id)

    if report.is_valid:
        logger.info("Integrity check for user %s: all records consistent", user_id)
    else:
        logger.warning(
            "Integrity check for user %s: %d errors, %d warnings",
            user_id, len(report.errors), len(report.warnings),
        )
    return report
