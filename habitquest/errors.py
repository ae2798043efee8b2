"""
habitquest.errors — Exception Taxonomy
=======================================

Structural and connectivity failures are raised; consistency findings are
not exceptions at all (see :class:`habitquest.services.integrity_service.Finding`).

- :class:`ValidationError` — a record failed its schema.  Never retried.
- :class:`NotFoundError` — a required entity is missing.  Fatal.
- :class:`StorageError` — I/O failure.  Retried while ``retryable``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from habitquest.services.repair_service import RepairResult


class HabitQuestError(Exception):
    """Base class for every error raised by the progression core."""


class ValidationError(HabitQuestError):
    """A record or an argument does not satisfy its schema."""

    def __init__(self, message: str, *, entity_id: str | None = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class NotFoundError(HabitQuestError):
    """A required entity (usually the character) does not exist."""

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


class StorageError(HabitQuestError):
    """The backing store failed.

    ``retryable`` is True for transient failures; the retry policy keeps
    trying those until its attempt budget is spent and then re-raises,
    so a StorageError seen by a caller is always safe to retry later.
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ConcurrencyError(StorageError):
    """Optimistic concurrency check failed — the record changed underneath us."""


class RepairIncompleteError(StorageError):
    """One or more repair writes failed after exhausting retries."""

    def __init__(self, message: str, result: RepairResult) -> None:
        super().__init__(message, retryable=True)
        self.result = result
