"""
habitquest.constants — Shared Constants & the Leveling Formula
===============================================================

Single source of truth for attribute metadata, milestone thresholds and the
level formula.  The progression orchestrator and the integrity checker both
import :func:`level_for_experience` from here so they can never disagree.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Frequency(enum.StrEnum):
    """How often a habit is expected to be completed."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class SourceKind(enum.StrEnum):
    """What granted a chunk of experience (recorded in the experience log)."""
    HABIT = "habit"
    GOAL = "goal"
    MANUAL = "manual"


# Maximum gap in days between two completions before a streak breaks.
FREQUENCY_TOLERANCE_DAYS: dict[Frequency, int] = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.MONTHLY: 30,
}


# ---------------------------------------------------------------------------
# Core attributes
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AttributeInfo:
    name: str
    description: str
    icon: str


CORE_ATTRIBUTES: dict[str, AttributeInfo] = {
    "physical": AttributeInfo(
        "Physical", "Health, fitness, and physical well-being", "\U0001f4aa",
    ),
    "financial": AttributeInfo(
        "Financial", "Money management and financial growth", "\U0001f4b0",
    ),
    "mental": AttributeInfo(
        "Mental", "Learning, focus, and cognitive development", "\U0001f9e0",
    ),
    "spiritual": AttributeInfo(
        "Spiritual", "Inner peace, meditation, and spiritual growth", "\U0001f54a",
    ),
    "social": AttributeInfo(
        "Social", "Relationships, communication, and social skills", "\U0001f465",
    ),
}

_RESERVED_LABELS: frozenset[str] = frozenset(
    label.casefold()
    for key, info in CORE_ATTRIBUTES.items()
    for label in (key, info.name)
)


def attribute_label(attribute: str, *, is_custom: bool = False) -> str:
    """Display name used in achievement titles.

    Core attributes map to their capitalised name; custom attributes are
    user-chosen strings and are used verbatim, unless the name matches a
    core attribute (ignoring case), in which case it is suffixed with
    ``" (Custom)"`` so "Physical Adept" always means the core attribute.
    """
    if not is_custom and attribute in CORE_ATTRIBUTES:
        return CORE_ATTRIBUTES[attribute].name
    if is_custom and attribute.casefold() in _RESERVED_LABELS:
        return f"{attribute} (Custom)"
    return attribute


def default_core_attributes() -> dict[str, int]:
    return {key: 0 for key in CORE_ATTRIBUTES}


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------
ATTRIBUTE_ADEPT_THRESHOLD = 5
ATTRIBUTE_MASTER_THRESHOLD = 10

# Exact streak value → achievement title
STREAK_MILESTONES: dict[int, str] = {
    7: "Week Warrior",
    30: "Monthly Master",
    100: "Century Champion",
}

ACCESSORY_LEVEL_INTERVAL = 5
ACHIEVEMENT_LEVEL_INTERVAL = 10


def accessory_for_level(level: int) -> str:
    return f"level_{level}_accessory"


def level_achievement(level: int) -> str:
    return f"Reached Level {level}!"


# ---------------------------------------------------------------------------
# Leveling formula — THE single canonical implementation
# ---------------------------------------------------------------------------
XP_PER_LEVEL = 100
ATTRIBUTE_INCREASE_CHANCE = 0.7


def level_for_experience(experience: int, xp_per_level: int = XP_PER_LEVEL) -> int:
    """Level reached with *experience* total XP.

    Linear formula::

        level = experience // xp_per_level + 1

    Monotonic non-decreasing and always >= 1 for experience >= 0.
    Negative input is clamped to zero.
    """
    if xp_per_level <= 0:
        raise ValueError("xp_per_level must be positive")
    return max(experience, 0) // xp_per_level + 1


def experience_for_level(level: int, xp_per_level: int = XP_PER_LEVEL) -> int:
    """Minimum total XP needed to be at *level* (inverse of the above)."""
    return max(level - 1, 0) * xp_per_level
