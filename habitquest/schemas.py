"""
habitquest.schemas — Record Schemas
====================================

pydantic models describing the records the store hands back.  The store
returns raw mappings; parsing them here is what the integrity checker uses
to decide whether a record is structurally valid, and what the services use
to get typed values to work with.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from habitquest.constants import Frequency, SourceKind, default_core_attributes
from habitquest.errors import ValidationError

M = TypeVar("M", bound=BaseModel)

__all__ = [
    "CharacterRecord",
    "ExperienceLogEntry",
    "GoalRecord",
    "HabitRecord",
    "parse_record",
]


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CharacterRecord(_Record):
    id: str
    user_id: str
    name: str = ""
    level: int = Field(default=1, ge=1)
    experience: int = Field(default=0, ge=0)
    attributes: dict[str, int] = Field(default_factory=default_core_attributes)
    custom_attributes: dict[str, int] = Field(default_factory=dict)
    achievements: set[str] = Field(default_factory=set)
    accessories: set[str] = Field(default_factory=set)
    version: int = Field(default=0, ge=0)

    @field_validator("achievements", "accessories", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return set() if value is None else value


class HabitRecord(_Record):
    id: str
    user_id: str
    character_id: str
    title: str = Field(min_length=1, max_length=100)
    frequency: Frequency
    completed_dates: list[date] = Field(default_factory=list)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    attribute_type: str = Field(min_length=1)
    is_custom_attribute: bool = False
    experience_reward: int = Field(default=10, ge=0)

    @field_validator("completed_dates", mode="before")
    @classmethod
    def _reduce_datetimes(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [v.date() if isinstance(v, datetime) else v for v in value]
        return value


class GoalRecord(_Record):
    id: str
    user_id: str
    character_id: str
    title: str = Field(min_length=1, max_length=100)
    progress: int = Field(default=0, ge=0, le=100)
    completed_at: datetime | None = None
    attribute_type: str = Field(min_length=1)
    is_custom_attribute: bool = False
    experience_reward: int = Field(default=50, ge=0)

    @property
    def is_complete(self) -> bool:
        return self.progress >= 100


class ExperienceLogEntry(BaseModel):
    """Append-only audit row.  Written once, never mutated."""

    model_config = ConfigDict(frozen=True)

    character_id: str
    amount: int = Field(gt=0)
    source_kind: SourceKind
    leveled_up: bool
    source_event_id: str | None = None


def parse_record(model: type[M], raw: Any) -> M:
    """Validate *raw* against *model*, translating pydantic's error type.

    Raises
    ------
    ValidationError
        With a compact message naming the offending fields.
    """
    try:
        return model.model_validate(raw)
    except PydanticValidationError as exc:
        entity_id = raw.get("id") if isinstance(raw, dict) else None
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(
            f"Invalid {model.__name__} {entity_id}: {problems}",
            entity_id=entity_id,
        ) from exc
