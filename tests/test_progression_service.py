"""
tests/test_progression_service.py — Progression Orchestrator Tests
===================================================================

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

import pytest
from sqlalchemy import event, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import FixedRandom
from habitquest.constants import SourceKind
from habitquest.database.models import Character, ExperienceLog
from habitquest.errors import NotFoundError, StorageError, ValidationError
from habitquest.services.progression_service import apply_experience, progression_messages


class WrappedStore:
    """Delegates to a real store; individual methods can be overridden."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)


def _character(engine, character_id) -> Character:
    with Session(engine) as session:
        return session.get(Character, character_id)


def _log_rows(engine) -> list[ExperienceLog]:
    with Session(engine) as session:
        return list(session.scalars(select(ExperienceLog)).all())


class TestApplyExperience:
    def test_first_level_up(self, ctx, seed, db_engine):
        cid = seed.character()
        result = apply_experience(ctx, cid, 100, "physical")

        assert result.new_experience == 100
        assert result.new_level == 2
        assert result.level_up is not None
        assert result.level_up.old_level == 1
        assert result.attribute_increases == {"physical": 1}

        row = _character(db_engine, cid)
        assert row.experience == 100
        assert row.level == 2
        assert row.attributes["physical"] == 1
        assert row.version == 1

        logs = _log_rows(db_engine)
        assert len(logs) == 1
        assert logs[0].amount == 100
        assert logs[0].leveled_up is True
        assert logs[0].source_kind == SourceKind.MANUAL.value

    def test_no_level_up_no_attribute_roll(self, ctx, seed, db_engine):
        cid = seed.character()
        result = apply_experience(ctx, cid, 30, "mental")
        assert result.level_up is None
        assert result.attribute_increases == {}
        assert _character(db_engine, cid).attributes["mental"] == 0

    def test_failed_roll_leaves_attribute(self, ctx, seed, db_engine):
        ctx.rng = FixedRandom(0.99)
        cid = seed.character()
        result = apply_experience(ctx, cid, 100, "physical")
        assert result.level_up is not None
        assert result.attribute_increases == {}
        assert _character(db_engine, cid).attributes["physical"] == 0

    def test_adept_unlocked_on_rise(self, ctx, seed, db_engine):
        attrs = {"physical": 4, "financial": 0, "mental": 0, "spiritual": 0, "social": 0}
        cid = seed.character(experience=90, attributes=attrs)
        result = apply_experience(ctx, cid, 10, "physical")
        assert "Physical Adept" in result.new_achievements
        assert "Physical Adept" in _character(db_engine, cid).achievements

        again = apply_experience(ctx, cid, 100, "physical")
        assert "Physical Adept" not in again.new_achievements
        assert _character(db_engine, cid).achievements.count("Physical Adept") == 1

    def test_multi_level_jump_unlocks_every_milestone(self, ctx, seed, db_engine):
        cid = seed.character()
        result = apply_experience(ctx, cid, 1000, "social")
        assert result.new_level == 11
        assert result.level_up.unlocked_accessories == ["level_5_accessory", "level_10_accessory"]
        assert "Reached Level 10!" in result.new_achievements
        # One roll per gain, however many levels were crossed.
        assert result.attribute_increases == {"social": 1}

        row = _character(db_engine, cid)
        assert sorted(row.accessories) == ["level_10_accessory", "level_5_accessory"]

    def test_custom_attribute(self, ctx, seed, db_engine):
        cid = seed.character(custom_attributes={"guitar": 4})
        result = apply_experience(ctx, cid, 100, "guitar", True)
        assert result.new_achievements == ["guitar Adept"]
        row = _character(db_engine, cid)
        assert row.custom_attributes == {"guitar": 5}
        assert "guitar" not in row.attributes

    def test_custom_attribute_named_like_core(self, ctx, seed, db_engine):
        attrs = {"physical": 4, "financial": 0, "mental": 0, "spiritual": 0, "social": 0}
        cid = seed.character(attributes=attrs, custom_attributes={"Physical": 4})

        custom = apply_experience(ctx, cid, 100, "Physical", True)
        assert custom.new_achievements == ["Physical (Custom) Adept"]

        core = apply_experience(ctx, cid, 100, "physical")
        assert core.new_achievements == ["Physical Adept"]

        row = _character(db_engine, cid)
        assert {"Physical Adept", "Physical (Custom) Adept"} <= set(row.achievements)

    def test_streak_milestone(self, ctx, seed):
        cid = seed.character()
        result = apply_experience(ctx, cid, 10, "physical", streak=7)
        assert result.streak_milestone == 7
        assert "Week Warrior" in result.new_achievements

    def test_streak_past_milestone_skipped(self, ctx, seed):
        cid = seed.character()
        result = apply_experience(ctx, cid, 10, "physical", streak=10)
        assert result.streak_milestone is None
        assert "Week Warrior" not in result.new_achievements

    def test_stored_level_too_high_is_corrected(self, ctx, seed, db_engine):
        cid = seed.character(level=5, experience=0)
        result = apply_experience(ctx, cid, 10, "physical")
        assert result.level_up is None
        assert _character(db_engine, cid).level == 1


class TestValidation:
    @pytest.mark.parametrize("amount", [0, -10])
    def test_non_positive_amount(self, ctx, seed, db_engine, amount):
        cid = seed.character()
        with pytest.raises(ValidationError):
            apply_experience(ctx, cid, amount, "physical")
        assert _log_rows(db_engine) == []

    def test_unknown_core_attribute(self, ctx, seed):
        cid = seed.character()
        with pytest.raises(ValidationError):
            apply_experience(ctx, cid, 10, "charisma")

    def test_empty_attribute(self, ctx, seed):
        cid = seed.character()
        with pytest.raises(ValidationError):
            apply_experience(ctx, cid, 10, "", True)

    def test_missing_character(self, ctx, db_engine):
        with pytest.raises(NotFoundError):
            apply_experience(ctx, "no-such-character", 10, "physical")
        assert _log_rows(db_engine) == []

    def test_corrupt_character(self, ctx, seed):
        cid = seed.character(experience=-5)
        with pytest.raises(ValidationError):
            apply_experience(ctx, cid, 10, "physical")


class TestIdempotency:
    def test_duplicate_event_is_noop(self, ctx, seed, db_engine):
        cid = seed.character()
        first = apply_experience(ctx, cid, 100, "physical", source_event_id="evt-1")
        second = apply_experience(ctx, cid, 100, "physical", source_event_id="evt-1")

        assert first.duplicate is False
        assert second.duplicate is True
        assert _character(db_engine, cid).experience == 100
        assert len(_log_rows(db_engine)) == 1

    def test_distinct_events_both_apply(self, ctx, seed, db_engine):
        cid = seed.character()
        apply_experience(ctx, cid, 40, "physical", source_event_id="evt-1")
        apply_experience(ctx, cid, 40, "physical", source_event_id="evt-2")
        assert _character(db_engine, cid).experience == 80


class TestStorageFailures:
    def test_persistent_failure_writes_nothing(self, ctx, seed, store, db_engine):
        cid = seed.character()
        calls = []

        def failing_commit(*args, **kwargs):
            calls.append(args)
            raise StorageError("connection reset")

        wrapped = WrappedStore(store)
        wrapped.commit_progression = failing_commit
        ctx.store = wrapped

        with pytest.raises(StorageError):
            apply_experience(ctx, cid, 100, "physical")

        assert len(calls) == ctx.retry.attempts
        assert _log_rows(db_engine) == []
        assert _character(db_engine, cid).experience == 0

    def test_failed_log_insert_rolls_back_and_retry_grants_once(self, ctx, seed, db_engine):
        """The log row and the character write commit together, so a caller
        retrying with the same key after a failure gets the XP exactly once."""
        cid = seed.character()

        def fail_log_insert(mapper, connection, target):
            raise OperationalError("INSERT INTO experience_log", {}, Exception("disk I/O error"))

        event.listen(ExperienceLog, "before_insert", fail_log_insert)
        try:
            with pytest.raises(StorageError):
                apply_experience(ctx, cid, 100, "physical", source_event_id="habit:h1:2024-03-15")
        finally:
            event.remove(ExperienceLog, "before_insert", fail_log_insert)

        row = _character(db_engine, cid)
        assert row.experience == 0
        assert row.version == 0
        assert _log_rows(db_engine) == []

        result = apply_experience(ctx, cid, 100, "physical", source_event_id="habit:h1:2024-03-15")
        assert result.duplicate is False
        assert _character(db_engine, cid).experience == 100

        again = apply_experience(ctx, cid, 100, "physical", source_event_id="habit:h1:2024-03-15")
        assert again.duplicate is True
        assert _character(db_engine, cid).experience == 100
        assert len(_log_rows(db_engine)) == 1

    def test_racing_duplicate_is_rolled_back(self, ctx, seed, store, db_engine):
        """Two calls with the same key both pass the up-front check; the
        second commit hits the unique key and writes nothing."""
        cid = seed.character()
        apply_experience(ctx, cid, 100, "physical", source_event_id="goal:g1:completed")

        wrapped = WrappedStore(store)
        wrapped.has_experience_log = lambda source_event_id: False
        ctx.store = wrapped

        result = apply_experience(ctx, cid, 100, "physical", source_event_id="goal:g1:completed")

        assert result.duplicate is True
        row = _character(db_engine, cid)
        assert row.experience == 100
        assert row.version == 1
        assert len(_log_rows(db_engine)) == 1

    def test_non_retryable_failure_not_retried(self, ctx, seed, store):
        cid = seed.character()
        calls = []

        def failing_commit(*args, **kwargs):
            calls.append(args)
            raise StorageError("constraint", retryable=False)

        wrapped = WrappedStore(store)
        wrapped.commit_progression = failing_commit
        ctx.store = wrapped

        with pytest.raises(StorageError):
            apply_experience(ctx, cid, 10, "physical")
        assert len(calls) == 1

    def test_concurrent_write_is_retried_from_fresh_read(self, ctx, seed, store, db_engine):
        cid = seed.character()
        interfered = []

        def racing_commit(character_id, patch, expected_version, entry):
            if not interfered:
                interfered.append(True)
                # Another writer lands between our read and our write.
                store.update_character(character_id, {"experience": 50})
            return store.commit_progression(character_id, patch, expected_version, entry)

        wrapped = WrappedStore(store)
        wrapped.commit_progression = racing_commit
        ctx.store = wrapped

        result = apply_experience(ctx, cid, 100, "physical")

        assert result.new_experience == 150
        row = _character(db_engine, cid)
        assert row.experience == 150
        assert row.version == 2
        assert len(_log_rows(db_engine)) == 1

    def test_monitor_counts_failures(self, ctx, seed):
        with pytest.raises(NotFoundError):
            apply_experience(ctx, "missing", 10, "physical")
        stats = ctx.monitor.snapshot()["apply_experience"]
        assert stats["calls"] == 1
        assert stats["errors"] == 1


class TestMessages:
    def test_level_up_messages(self, ctx, seed):
        cid = seed.character()
        result = apply_experience(ctx, cid, 100, "physical", streak=7)
        messages = progression_messages(result)
        assert messages[0] == "Congratulations! You've reached level 2!"
        assert "Physical increased by 1!" in messages
        assert "Achievement Unlocked: Week Warrior!" in messages
        assert messages[-1] == "Amazing! You've maintained a 7-day streak!"
