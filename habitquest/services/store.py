"""
habitquest.services.store — Repository Interface & SQLAlchemy Store
====================================================================

The progression core only talks to storage through :class:`ProgressionStore`.
Records come back as plain mappings (not ORM objects, not pydantic models)
so the integrity checker can validate exactly what is stored.

:class:`SqlAlchemyStore` is the shipped implementation.  Every method opens
its own short session, so each write is one atomic transaction, and every
SQLAlchemy exception is translated into :class:`~habitquest.errors.StorageError`
at this boundary.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import Engine, select, union, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from habitquest.database.engine import get_session
from habitquest.database.models import Character, ExperienceLog, Goal, Habit
from habitquest.errors import ConcurrencyError, NotFoundError, StorageError
from habitquest.schemas import ExperienceLogEntry

logger = logging.getLogger(__name__)

Record = dict[str, Any]

# ---------------------------------------------------------------------------
# Patch allow lists — only these fields may be written by the core
# ---------------------------------------------------------------------------
CHARACTER_PATCH_FIELDS: frozenset[str] = frozenset({
    "level", "experience", "attributes", "custom_attributes",
    "achievements", "accessories",
})
HABIT_PATCH_FIELDS: frozenset[str] = frozenset({
    "completed_dates", "current_streak", "longest_streak",
})
GOAL_PATCH_FIELDS: frozenset[str] = frozenset({"progress", "completed_at"})


class ProgressionStore(Protocol):
    """Narrow storage collaborator used by every service."""

    def get_character(self, user_id: str) -> Record: ...
    def get_character_by_id(self, character_id: str) -> Record: ...
    def list_characters(self, user_id: str) -> list[Record]: ...
    def update_character(
        self,
        character_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> None: ...
    def commit_progression(
        self,
        character_id: str,
        patch: Mapping[str, Any],
        expected_version: int,
        entry: ExperienceLogEntry,
    ) -> bool: ...
    def list_habits(self, user_id: str) -> list[Record]: ...
    def get_habit(self, habit_id: str) -> Record: ...
    def update_habit(self, habit_id: str, patch: Mapping[str, Any]) -> None: ...
    def list_goals(self, user_id: str) -> list[Record]: ...
    def get_goal(self, goal_id: str) -> Record: ...
    def update_goal(self, goal_id: str, patch: Mapping[str, Any]) -> None: ...
    def append_experience_log(self, entry: ExperienceLogEntry) -> None: ...
    def has_experience_log(self, source_event_id: str) -> bool: ...
    def list_user_ids(self) -> list[str]: ...


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------
def _row_to_dict(obj: Any) -> Record:
    """Convert a SQLAlchemy model instance to a plain dict of column values."""
    return {col.key: getattr(obj, col.key) for col in obj.__table__.columns}


def _to_column_value(value: Any) -> Any:
    """Make a patch value storable in a JSONB / scalar column."""
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (list, tuple)):
        return [
            v.isoformat() if isinstance(v, (date, datetime)) else v
            for v in value
        ]
    return value


def _clean_patch(patch: Mapping[str, Any], allowed: frozenset[str], entity: str) -> dict:
    illegal = set(patch) - allowed
    if illegal:
        raise ValueError(f"Fields not writable on {entity}: {sorted(illegal)}")
    return {key: _to_column_value(value) for key, value in patch.items()}


def _versioned_update(
    session: Session,
    character_id: str,
    values: dict[str, Any],
    expected_version: int | None,
) -> None:
    stmt = update(Character).where(Character.id == character_id)
    if expected_version is not None:
        stmt = stmt.where(Character.version == expected_version)
    result = session.execute(stmt.values(**values, version=Character.version + 1))
    if result.rowcount == 0:
        if session.get(Character, character_id) is None:
            raise NotFoundError("Character", character_id)
        raise ConcurrencyError(
            f"Character {character_id} changed since version {expected_version}"
        )


def _log_row(entry: ExperienceLogEntry) -> ExperienceLog:
    return ExperienceLog(
        character_id=entry.character_id,
        amount=entry.amount,
        source_kind=entry.source_kind.value,
        leveled_up=entry.leveled_up,
        source_event_id=entry.source_event_id,
    )


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------
class SqlAlchemyStore:
    """:class:`ProgressionStore` backed by the ORM models."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            raise StorageError(f"{operation} violated a constraint: {exc.orig}", retryable=False) from exc
        except OperationalError as exc:
            logger.warning("Transient storage failure during %s: %s", operation, exc.orig)
            raise StorageError(f"{operation} failed: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"{operation} failed: {exc}") from exc

    # -------------------------------------------------------------------
    # Characters
    # -------------------------------------------------------------------
    def list_characters(self, user_id: str) -> list[Record]:
        with self._guard("list_characters"), Session(self._engine) as session:
            rows = session.scalars(
                select(Character)
                .where(Character.user_id == user_id)
                .order_by(Character.created_at, Character.id)
            ).all()
            return [_row_to_dict(r) for r in rows]

    def get_character(self, user_id: str) -> Record:
        characters = self.list_characters(user_id)
        if not characters:
            raise NotFoundError("Character", f"user {user_id}")
        return characters[0]

    def get_character_by_id(self, character_id: str) -> Record:
        with self._guard("get_character_by_id"), Session(self._engine) as session:
            row = session.get(Character, character_id)
            if row is None:
                raise NotFoundError("Character", character_id)
            return _row_to_dict(row)

    def update_character(
        self,
        character_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> None:
        """Write *patch* in one statement and bump ``version``.

        With *expected_version* the write only applies if nobody else has
        written since that version was read; otherwise
        :class:`ConcurrencyError` is raised and nothing changes.
        """
        values = _clean_patch(patch, CHARACTER_PATCH_FIELDS, "character")
        with self._guard("update_character"), get_session(self._engine) as session:
            _versioned_update(session, character_id, values, expected_version)

    def commit_progression(
        self,
        character_id: str,
        patch: Mapping[str, Any],
        expected_version: int,
        entry: ExperienceLogEntry,
    ) -> bool:
        """Apply a character patch and append its log entry in ONE transaction.

        Returns False, with nothing written, when ``entry.source_event_id``
        is already in the experience log (the grant was applied before).
        """
        values = _clean_patch(patch, CHARACTER_PATCH_FIELDS, "character")
        with self._guard("commit_progression"):
            try:
                with get_session(self._engine) as session:
                    _versioned_update(session, character_id, values, expected_version)
                    session.add(_log_row(entry))
                    session.flush()
            except IntegrityError:
                if entry.source_event_id is not None and self.has_experience_log(
                    entry.source_event_id
                ):
                    logger.info(
                        "Experience event %s already committed; rolled back",
                        entry.source_event_id,
                    )
                    return False
                raise
        return True

    # -------------------------------------------------------------------
    # Habits
    # -------------------------------------------------------------------
    def list_habits(self, user_id: str) -> list[Record]:
        with self._guard("list_habits"), Session(self._engine) as session:
            rows = session.scalars(
                select(Habit).where(Habit.user_id == user_id).order_by(Habit.id)
            ).all()
            return [_row_to_dict(r) for r in rows]

    def get_habit(self, habit_id: str) -> Record:
        with self._guard("get_habit"), Session(self._engine) as session:
            row = session.get(Habit, habit_id)
            if row is None:
                raise NotFoundError("Habit", habit_id)
            return _row_to_dict(row)

    def update_habit(self, habit_id: str, patch: Mapping[str, Any]) -> None:
        values = _clean_patch(patch, HABIT_PATCH_FIELDS, "habit")
        with self._guard("update_habit"), get_session(self._engine) as session:
            result = session.execute(
                update(Habit).where(Habit.id == habit_id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("Habit", habit_id)

    # -------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------
    def list_goals(self, user_id: str) -> list[Record]:
        with self._guard("list_goals"), Session(self._engine) as session:
            rows = session.scalars(
                select(Goal).where(Goal.user_id == user_id).order_by(Goal.id)
            ).all()
            return [_row_to_dict(r) for r in rows]

    def get_goal(self, goal_id: str) -> Record:
        with self._guard("get_goal"), Session(self._engine) as session:
            row = session.get(Goal, goal_id)
            if row is None:
                raise NotFoundError("Goal", goal_id)
            return _row_to_dict(row)

    def update_goal(self, goal_id: str, patch: Mapping[str, Any]) -> None:
        values = _clean_patch(patch, GOAL_PATCH_FIELDS, "goal")
        with self._guard("update_goal"), get_session(self._engine) as session:
            result = session.execute(
                update(Goal).where(Goal.id == goal_id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("Goal", goal_id)

    # -------------------------------------------------------------------
    # Experience log
    # -------------------------------------------------------------------
    def append_experience_log(self, entry: ExperienceLogEntry) -> None:
        with self._guard("append_experience_log"), get_session(self._engine) as session:
            session.add(_log_row(entry))

    def has_experience_log(self, source_event_id: str) -> bool:
        with self._guard("has_experience_log"), Session(self._engine) as session:
            found = session.scalar(
                select(ExperienceLog.id)
                .where(ExperienceLog.source_event_id == source_event_id)
                .limit(1)
            )
            return found is not None

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------
    def list_user_ids(self) -> list[str]:
        """Every user owning a character, habit or goal."""
        with self._guard("list_user_ids"), Session(self._engine) as session:
            stmt = union(
                select(Character.user_id),
                select(Habit.user_id),
                select(Goal.user_id),
            )
            return sorted(session.scalars(stmt).all())
