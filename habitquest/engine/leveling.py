"""
habitquest.engine.leveling — Leveling Policy
=============================================

Pure calculation pipeline, no I/O:

  current XP + gained XP → new level → attribute roll → milestone unlocks

The level itself always comes from
:func:`habitquest.constants.level_for_experience` — the integrity checker
uses the same function, so a freshly progressed character never shows
up as drift.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass, field

from habitquest.constants import (
    ACCESSORY_LEVEL_INTERVAL,
    ACHIEVEMENT_LEVEL_INTERVAL,
    ATTRIBUTE_INCREASE_CHANCE,
    XP_PER_LEVEL,
    accessory_for_level,
    level_achievement,
    level_for_experience,
)
from habitquest.errors import ValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "LevelingOutcome",
    "MilestoneUnlocks",
    "apply_experience_gain",
    "level_milestones",
    "roll_attribute_increase",
]


@dataclass(frozen=True, slots=True)
class LevelingOutcome:
    """Result of adding experience to a character."""

    new_experience: int
    new_level: int
    old_level: int
    leveled_up: bool

    @property
    def levels_gained(self) -> range:
        """Every level newly reached by this gain (empty if none)."""
        return range(self.old_level + 1, self.new_level + 1)


@dataclass
class MilestoneUnlocks:
    accessories: list[str] = field(default_factory=list)
    achievements: list[str] = field(default_factory=list)


def apply_experience_gain(
    current_experience: int,
    experience_gained: int,
    *,
    current_level: int | None = None,
    xp_per_level: int = XP_PER_LEVEL,
) -> LevelingOutcome:
    """Add *experience_gained* and derive the new level.

    ``current_level`` is the stored level; when omitted it is derived from
    ``current_experience``.  A level-up happens only when the canonical
    level for the new total exceeds it.
    """
    if current_experience < 0:
        raise ValidationError(f"Experience cannot be negative: {current_experience}")
    if experience_gained <= 0:
        raise ValidationError(f"Experience gained must be positive: {experience_gained}")

    old_level = (
        current_level
        if current_level is not None
        else level_for_experience(current_experience, xp_per_level)
    )
    new_experience = current_experience + experience_gained
    new_level = level_for_experience(new_experience, xp_per_level)
    return LevelingOutcome(
        new_experience=new_experience,
        new_level=new_level,
        old_level=old_level,
        leveled_up=new_level > old_level,
    )


def roll_attribute_increase(
    attribute: str,
    rng: random.Random,
    chance: float = ATTRIBUTE_INCREASE_CHANCE,
) -> dict[str, int]:
    """Maybe bump the attribute tied to the action by one.

    Called once per level-up event regardless of how many levels were gained.
    """
    if rng.random() < chance:
        return {attribute: 1}
    return {}


def level_milestones(
    levels: Iterable[int],
    existing_accessories: set[str],
    existing_achievements: set[str],
) -> MilestoneUnlocks:
    """Accessories and achievements unlocked by reaching *levels*.

    Multiples of 5 grant ``level_{n}_accessory``; multiples of 10 grant
    ``Reached Level {n}!``.  Anything already owned is skipped.
    """
    unlocks = MilestoneUnlocks()
    for level in levels:
        if level % ACCESSORY_LEVEL_INTERVAL == 0:
            token = accessory_for_level(level)
            if token not in existing_accessories and token not in unlocks.accessories:
                unlocks.accessories.append(token)
        if level % ACHIEVEMENT_LEVEL_INTERVAL == 0:
            title = level_achievement(level)
            if title not in existing_achievements and title not in unlocks.achievements:
                unlocks.achievements.append(title)
    if unlocks.accessories or unlocks.achievements:
        logger.debug(
            "Level milestones unlocked: accessories=%s achievements=%s",
            unlocks.accessories, unlocks.achievements,
        )
    return unlocks
