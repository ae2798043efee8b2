"""
habitquest.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- characters      — One per user; level, XP, attributes, unlock sets
- habits          — Recurring activities with completion history + streaks
- goals           — One-off objectives with 0–100 progress
- experience_log  — Append-only XP audit trail with idempotency key

Enumerated fields (``frequency``) are stored as plain strings on purpose:
the integrity checker has to be able to *see* a corrupted value in order to
report it, so the schema is enforced by :mod:`habitquest.schemas`, not by
the database.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all HabitQuest ORM models."""


# ---------------------------------------------------------------------------
# Characters — one row per user
# ---------------------------------------------------------------------------
class Character(Base):
    __tablename__ = "characters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(30), nullable=False, default="")
    level: Mapped[int] = mapped_column(Integer, default=1)
    experience: Mapped[int] = mapped_column(Integer, default=0)
    attributes: Mapped[dict] = mapped_column(JSONB, default=dict)
    custom_attributes: Mapped[dict] = mapped_column(JSONB, default=dict)
    achievements: Mapped[list] = mapped_column(JSONB, default=list)
    accessories: Mapped[list] = mapped_column(JSONB, default=list)
    # Optimistic concurrency token, bumped on every write
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    habits: Mapped[list[Habit]] = relationship(back_populates="character")
    goals: Mapped[list[Goal]] = relationship(back_populates="character")

    __table_args__ = (
        Index("ix_characters_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Character id={self.id} user={self.user_id} lvl={self.level}>"


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------
class Habit(Base):
    __tablename__ = "habits"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    character_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("characters.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)  # daily, weekly, monthly
    completed_dates: Mapped[list] = mapped_column(JSONB, default=list)  # ISO dates
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    attribute_type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_custom_attribute: Mapped[bool] = mapped_column(Boolean, default=False)
    experience_reward: Mapped[int] = mapped_column(Integer, default=10)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    character: Mapped[Character] = relationship(back_populates="habits")

    __table_args__ = (
        Index("ix_habits_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Habit id={self.id} title={self.title!r} streak={self.current_streak}>"


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------
class Goal(Base):
    __tablename__ = "goals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    character_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("characters.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    attribute_type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_custom_attribute: Mapped[bool] = mapped_column(Boolean, default=False)
    experience_reward: Mapped[int] = mapped_column(Integer, default=50)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    character: Mapped[Character] = relationship(back_populates="goals")

    __table_args__ = (
        Index("ix_goals_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Goal id={self.id} title={self.title!r} progress={self.progress}>"


# ---------------------------------------------------------------------------
# ExperienceLog — append-only audit trail
# ---------------------------------------------------------------------------
class ExperienceLog(Base):
    __tablename__ = "experience_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[str] = mapped_column(String(36), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    leveled_up: Mapped[bool] = mapped_column(Boolean, default=False)
    source_event_id: Mapped[str | None] = mapped_column(String(128), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_experience_log_character", "character_id", "created_at"),
        Index("ix_experience_log_source", "source_event_id", unique=True),
    )

    def __repr__(self) -> str:
        return (
            f"<ExperienceLog id={self.id} char={self.character_id} "
            f"amount={self.amount} source={self.source_kind}>"
        )
