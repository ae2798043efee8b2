"""
habitquest.services.activity_service — Habit Completions & Goal Progress
=========================================================================

The two user actions that feed the progression orchestrator:

- completing a habit for a day appends the date, recomputes the streak,
  raises the longest streak if needed, then grants the habit's reward with
  the *updated* streak so streak milestones fire;
- moving a goal to 100% stamps its completion time and grants its reward.

Both grants carry a natural idempotency key (``habit:<id>:<day>`` and
``goal:<id>:completed``), so repeating an action never double-grants XP.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from habitquest.constants import SourceKind
from habitquest.engine.streaks import calculate_streak
from habitquest.errors import ValidationError
from habitquest.schemas import GoalRecord, HabitRecord, parse_record
from habitquest.services.context import ServiceContext
from habitquest.services.progression_service import ProgressionResult, apply_experience

logger = logging.getLogger(__name__)


@dataclass
class HabitCompletionResult:
    habit_id: str
    completed_on: date
    current_streak: int
    longest_streak: int
    already_recorded: bool
    progression: ProgressionResult | None = None


@dataclass
class GoalProgressResult:
    goal_id: str
    progress: int
    completed_at: datetime | None
    progression: ProgressionResult | None = None


def record_habit_completion(
    ctx: ServiceContext,
    habit_id: str,
    completed_on: date | None = None,
) -> HabitCompletionResult:
    """Mark *habit_id* done on *completed_on* (default: today)."""
    habit = parse_record(HabitRecord, ctx.retry.call(ctx.store.get_habit, habit_id))
    day = completed_on or ctx.today()
    already = day in habit.completed_dates

    dates = sorted(set(habit.completed_dates) | {day})
    current = calculate_streak(dates, habit.frequency, today=ctx.today())
    longest = max(habit.longest_streak, current)

    if not already or current != habit.current_streak or longest != habit.longest_streak:
        ctx.retry.call(
            ctx.store.update_habit,
            habit.id,
            {"completed_dates": dates, "current_streak": current, "longest_streak": longest},
        )

    result = HabitCompletionResult(
        habit_id=habit.id,
        completed_on=day,
        current_streak=current,
        longest_streak=longest,
        already_recorded=already,
    )
    if habit.experience_reward > 0:
        result.progression = apply_experience(
            ctx,
            habit.character_id,
            habit.experience_reward,
            habit.attribute_type,
            habit.is_custom_attribute,
            streak=current,
            source_kind=SourceKind.HABIT,
            source_event_id=f"habit:{habit.id}:{day.isoformat()}",
        )
    logger.info(
        "Habit %s completed on %s (streak %d, longest %d)",
        habit.id, day, current, longest,
    )
    return result


def update_goal_progress(
    ctx: ServiceContext,
    goal_id: str,
    progress: int,
) -> GoalProgressResult:
    """Set goal progress (0–100), keeping the completion timestamp in sync."""
    if not 0 <= progress <= 100:
        raise ValidationError(f"Goal progress must be within 0–100: {progress}", entity_id=goal_id)

    goal = parse_record(GoalRecord, ctx.retry.call(ctx.store.get_goal, goal_id))
    complete = progress >= 100
    completed_at = (goal.completed_at or ctx.clock()) if complete else None

    ctx.retry.call(
        ctx.store.update_goal,
        goal.id,
        {"progress": progress, "completed_at": completed_at},
    )

    result = GoalProgressResult(goal_id=goal.id, progress=progress, completed_at=completed_at)
    if complete and goal.experience_reward > 0:
        result.progression = apply_experience(
            ctx,
            goal.character_id,
            goal.experience_reward,
            goal.attribute_type,
            goal.is_custom_attribute,
            source_kind=SourceKind.GOAL,
            source_event_id=f"goal:{goal.id}:completed",
        )
        logger.info("Goal %s completed", goal.id)
    return result
