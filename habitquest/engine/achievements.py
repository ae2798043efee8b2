"""
habitquest.engine.achievements — Achievement Rule Evaluation
=============================================================

Rule-registry implementation.  Each rule is a pure function that receives
an :class:`AchievementContext` and returns the set of achievement titles it
considers earned.  :func:`check_achievements` unions every rule and removes
what the character already owns.

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from habitquest.constants import (
    ACHIEVEMENT_LEVEL_INTERVAL,
    ATTRIBUTE_ADEPT_THRESHOLD,
    ATTRIBUTE_MASTER_THRESHOLD,
    STREAK_MILESTONES,
    attribute_label,
    level_achievement,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Achievement Context — passed to every rule
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AchievementContext:
    """Snapshot of character state after an update.

    Parameters
    ----------
    attributes : Attribute values to evaluate (already including any bump).
    custom_attributes : Names in ``attributes`` that are user-defined.
    streaks : Current streak values (post-update, not historical maxima).
    level : Current level.
    """

    attributes: Mapping[str, int] = field(default_factory=dict)
    custom_attributes: frozenset[str] = frozenset()
    streaks: tuple[int, ...] = ()
    level: int = 1


# ---------------------------------------------------------------------------
# Rules — pure functions ctx → candidate titles
# ---------------------------------------------------------------------------
def _attribute_rule(ctx: AchievementContext) -> set[str]:
    earned: set[str] = set()
    for name, value in ctx.attributes.items():
        label = attribute_label(name, is_custom=name in ctx.custom_attributes)
        if value >= ATTRIBUTE_ADEPT_THRESHOLD:
            earned.add(f"{label} Adept")
        if value >= ATTRIBUTE_MASTER_THRESHOLD:
            earned.add(f"{label} Master")
    return earned


def _streak_rule(ctx: AchievementContext) -> set[str]:
    # Exact equality: a streak that jumps from 6 to 8 never earns Week Warrior.
    return {STREAK_MILESTONES[s] for s in ctx.streaks if s in STREAK_MILESTONES}


def _level_rule(ctx: AchievementContext) -> set[str]:
    if ctx.level > 0 and ctx.level % ACHIEVEMENT_LEVEL_INTERVAL == 0:
        return {level_achievement(ctx.level)}
    return set()


ACHIEVEMENT_RULES: dict[str, Callable[[AchievementContext], set[str]]] = {
    "attribute": _attribute_rule,
    "streak": _streak_rule,
    "level": _level_rule,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def streak_milestone(streak: int | None) -> int | None:
    """The milestone value if *streak* sits exactly on one, else None."""
    if streak is not None and streak in STREAK_MILESTONES:
        return streak
    return None


def check_achievements(ctx: AchievementContext, already_earned: set[str]) -> list[str]:
    """Titles newly earned by *ctx*: ``candidates - already_earned``.

    Returned sorted so repeated evaluation of the same state is stable.
    """
    candidates: set[str] = set()
    for rule_name, rule in ACHIEVEMENT_RULES.items():
        hits = rule(ctx)
        if hits:
            logger.debug("Rule %s matched %s", rule_name, sorted(hits))
        candidates |= hits
    return sorted(candidates - already_earned)
