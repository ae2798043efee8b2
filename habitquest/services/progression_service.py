"""
habitquest.services.progression_service — Apply Experience to a Character
==========================================================================

Composes the pure engines into one read-modify-write transaction:

1. Load the character (NotFoundError if missing).
2. Add experience and derive the new level (leveling policy).
3. On level-up, maybe bump the attribute tied to the action.
4. Unlock level milestones ∪ achievement rules against *post*-update values.
5. Persist experience, level, attributes, achievements and accessories
   together with the experience log entry in ONE transaction, guarded by
   the character's ``version``.

A concurrent writer makes step 5 fail with ConcurrencyError; the retry
policy then re-runs steps 1–5 from a fresh read.  Any failure in step 5
rolls back both the character and the log row.

Callers that may retry should pass ``source_event_id``: a second call with
the same key is a no-op reported as ``duplicate=True``, including when two
calls with the same key race past the up-front duplicate check.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from habitquest.constants import CORE_ATTRIBUTES, SourceKind, attribute_label
from habitquest.engine.achievements import (
    AchievementContext,
    check_achievements,
    streak_milestone,
)
from habitquest.engine.leveling import (
    apply_experience_gain,
    level_milestones,
    roll_attribute_increase,
)
from habitquest.errors import ValidationError
from habitquest.schemas import CharacterRecord, ExperienceLogEntry, parse_record
from habitquest.services.context import ServiceContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result objects
# ---------------------------------------------------------------------------
@dataclass
class LevelUpDetails:
    new_level: int
    old_level: int
    attribute_increases: dict[str, int] = field(default_factory=dict)
    unlocked_accessories: list[str] = field(default_factory=list)
    unlocked_achievements: list[str] = field(default_factory=list)


@dataclass
class ProgressionResult:
    """What one experience gain changed."""

    level_up: LevelUpDetails | None = None
    new_achievements: list[str] = field(default_factory=list)
    attribute_increases: dict[str, int] = field(default_factory=dict)
    streak_milestone: int | None = None
    new_experience: int | None = None
    new_level: int | None = None
    duplicate: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def apply_experience(
    ctx: ServiceContext,
    character_id: str,
    amount: int,
    attribute_type: str,
    is_custom_attribute: bool = False,
    *,
    streak: int | None = None,
    source_kind: SourceKind = SourceKind.MANUAL,
    source_event_id: str | None = None,
) -> ProgressionResult:
    """Grant *amount* XP to a character and apply every side effect.

    Parameters
    ----------
    streak : Current streak of the habit that triggered the gain, already
        updated for this completion.  Drives streak milestones.
    source_kind : Recorded in the experience log.
    source_event_id : Idempotency key for safe caller retries.

    Raises
    ------
    ValidationError
        Non-positive amount, unknown core attribute or a corrupt character.
    NotFoundError
        The character does not exist.
    StorageError
        The store kept failing after the retry budget; nothing was written.
    """
    if amount <= 0:
        raise ValidationError(f"Experience amount must be positive: {amount}")
    if not attribute_type:
        raise ValidationError("Attribute type is required")
    if not is_custom_attribute and attribute_type not in CORE_ATTRIBUTES:
        raise ValidationError(f"Unknown core attribute: {attribute_type!r}")

    with ctx.monitor.track("apply_experience"):
        if source_event_id is not None and ctx.retry.call(
            ctx.store.has_experience_log, source_event_id
        ):
            logger.info(
                "Duplicate experience event %s for character %s ignored",
                source_event_id, character_id,
            )
            return ProgressionResult(duplicate=True)

        result = ctx.retry.call(
            _progress_once,
            ctx,
            character_id,
            amount,
            attribute_type,
            is_custom_attribute,
            streak,
            source_kind,
            source_event_id,
        )

    if result.duplicate:
        logger.info(
            "Duplicate experience event %s for character %s ignored",
            source_event_id, character_id,
        )
    elif result.level_up is not None:
        logger.info(
            "Character %s leveled up %d → %d",
            character_id, result.level_up.old_level, result.level_up.new_level,
        )
    return result


def _progress_once(
    ctx: ServiceContext,
    character_id: str,
    amount: int,
    attribute_type: str,
    is_custom_attribute: bool,
    streak: int | None,
    source_kind: SourceKind,
    source_event_id: str | None,
) -> ProgressionResult:
    """One read-modify-write attempt, committed with its log entry."""
    character = parse_record(CharacterRecord, ctx.store.get_character_by_id(character_id))

    outcome = apply_experience_gain(
        character.experience,
        amount,
        current_level=character.level,
        xp_per_level=ctx.config.xp_per_level,
    )
    if outcome.new_level < outcome.old_level:
        logger.warning(
            "Character %s stored level %d exceeds canonical %d; correcting",
            character_id, outcome.old_level, outcome.new_level,
        )

    increases: dict[str, int] = {}
    if outcome.leveled_up:
        increases = roll_attribute_increase(
            attribute_type, ctx.rng, ctx.config.attribute_increase_chance,
        )

    pool = dict(character.custom_attributes if is_custom_attribute else character.attributes)
    pool[attribute_type] = pool.get(attribute_type, 0) + increases.get(attribute_type, 0)

    milestones = level_milestones(
        outcome.levels_gained, character.accessories, character.achievements,
    )
    rule_unlocks = check_achievements(
        AchievementContext(
            attributes={attribute_type: pool[attribute_type]},
            custom_attributes=frozenset({attribute_type}) if is_custom_attribute else frozenset(),
            streaks=(streak,) if streak is not None else (),
            level=outcome.new_level,
        ),
        character.achievements,
    )
    new_achievements = milestones.achievements + [
        title for title in rule_unlocks if title not in milestones.achievements
    ]

    patch = {
        "experience": outcome.new_experience,
        "level": outcome.new_level,
        "custom_attributes" if is_custom_attribute else "attributes": pool,
        "achievements": character.achievements | set(new_achievements),
        "accessories": character.accessories | set(milestones.accessories),
    }
    entry = ExperienceLogEntry(
        character_id=character.id,
        amount=amount,
        source_kind=source_kind,
        leveled_up=outcome.leveled_up,
        source_event_id=source_event_id,
    )
    if not ctx.store.commit_progression(character.id, patch, character.version, entry):
        return ProgressionResult(duplicate=True)

    level_up = None
    if outcome.leveled_up:
        level_up = LevelUpDetails(
            new_level=outcome.new_level,
            old_level=outcome.old_level,
            attribute_increases=increases,
            unlocked_accessories=milestones.accessories,
            unlocked_achievements=new_achievements,
        )
    return ProgressionResult(
        level_up=level_up,
        new_achievements=new_achievements,
        attribute_increases=increases,
        streak_milestone=streak_milestone(streak),
        new_experience=outcome.new_experience,
        new_level=outcome.new_level,
    )


def progression_messages(result: ProgressionResult) -> list[str]:
    """User-facing notification lines for a progression result."""
    messages: list[str] = []
    if result.level_up is not None:
        messages.append(
            f"Congratulations! You've reached level {result.level_up.new_level}!"
        )
    for attribute, increase in result.attribute_increases.items():
        messages.append(f"{attribute_label(attribute)} increased by {increase}!")
    for title in result.new_achievements:
        messages.append(f"Achievement Unlocked: {title}!")
    if result.streak_milestone:
        messages.append(
            f"Amazing! You've maintained a {result.streak_milestone}-day streak!"
        )
    return messages
