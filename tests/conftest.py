"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import random
from datetime import UTC, date, datetime

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from habitquest.config import HabitQuestConfig
from habitquest.database.models import Base, Character, Goal, Habit
from habitquest.services.context import ServiceContext
from habitquest.services.retry import RetryPolicy
from habitquest.services.store import SqlAlchemyStore

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

# Every test runs "on" this instant so streak math is deterministic.
FIXED_NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)
TODAY = FIXED_NOW.date()

NO_SLEEP = RetryPolicy(attempts=3, base_delay=0.0, max_delay=0.0, sleep=lambda _s: None)


class FixedRandom(random.Random):
    """``random()`` always returns *value* — 0.0 means every roll succeeds."""

    def __init__(self, value: float = 0.0) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all HabitQuest tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in the batch scanner).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def store(db_engine: Engine) -> SqlAlchemyStore:
    return SqlAlchemyStore(db_engine)


@pytest.fixture
def ctx(store: SqlAlchemyStore) -> ServiceContext:
    """Context with a fixed clock, always-successful attribute rolls and
    retries that never sleep."""
    return ServiceContext(
        store=store,
        config=HabitQuestConfig(),
        rng=FixedRandom(0.0),
        clock=lambda: FIXED_NOW,
        retry=NO_SLEEP,
    )


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------
class Seeder:
    """Inserts rows directly through the ORM, bypassing the services."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _add(self, row) -> str:
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            return row.id

    def character(self, user_id: str = "user-1", **overrides) -> str:
        values = {
            "user_id": user_id,
            "name": "Hero",
            "level": 1,
            "experience": 0,
            "attributes": {"physical": 0, "financial": 0, "mental": 0, "spiritual": 0, "social": 0},
            "custom_attributes": {},
            "achievements": [],
            "accessories": [],
        }
        values.update(overrides)
        return self._add(Character(**values))

    def habit(self, character_id: str, user_id: str = "user-1", **overrides) -> str:
        values = {
            "user_id": user_id,
            "character_id": character_id,
            "title": "Morning run",
            "frequency": "daily",
            "completed_dates": [],
            "current_streak": 0,
            "longest_streak": 0,
            "attribute_type": "physical",
            "is_custom_attribute": False,
            "experience_reward": 10,
        }
        values.update(overrides)
        if values["completed_dates"]:
            values["completed_dates"] = [
                d.isoformat() if isinstance(d, date) else d for d in values["completed_dates"]
            ]
        return self._add(Habit(**values))

    def goal(self, character_id: str, user_id: str = "user-1", **overrides) -> str:
        values = {
            "user_id": user_id,
            "character_id": character_id,
            "title": "Read 12 books",
            "progress": 0,
            "completed_at": None,
            "attribute_type": "mental",
            "is_custom_attribute": False,
            "experience_reward": 50,
        }
        values.update(overrides)
        return self._add(Goal(**values))


@pytest.fixture
def seed(db_engine: Engine) -> Seeder:
    return Seeder(db_engine)
