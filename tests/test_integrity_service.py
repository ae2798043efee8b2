"""
tests/test_integrity_service.py — Data Integrity Checker
=========================================================

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from conftest import FIXED_NOW, TODAY
from habitquest.errors import StorageError
from habitquest.services.integrity_service import (
    RECOMMENDATIONS,
    Finding,
    FindingCategory,
    IntegrityReport,
    Severity,
    check,
    generate_recommendations,
)


def _categories(findings):
    return [f.category for f in findings]


class TestCleanUser:
    def test_consistent_records_are_valid(self, ctx, seed):
        cid = seed.character(level=2, experience=150)
        seed.habit(
            cid,
            completed_dates=[TODAY, TODAY - timedelta(days=1)],
            current_streak=2,
            longest_streak=4,
        )
        seed.goal(cid, progress=40)
        seed.goal(cid, progress=100, completed_at=FIXED_NOW)

        report = check(ctx, "user-1")
        assert report.is_valid
        assert report.errors == []
        assert report.warnings == []
        assert report.recommendations == []


class TestCharacterChecks:
    def test_missing_character(self, ctx):
        report = check(ctx, "nobody")
        assert _categories(report.errors) == [FindingCategory.CHARACTER_COUNT]
        assert report.errors[0].stored == 0

    def test_duplicate_characters(self, ctx, seed):
        seed.character()
        seed.character()
        report = check(ctx, "user-1")
        assert FindingCategory.CHARACTER_COUNT in _categories(report.errors)

    def test_level_drift_is_warning(self, ctx, seed):
        cid = seed.character(level=1, experience=250)
        report = check(ctx, "user-1")
        assert report.errors == []
        (finding,) = report.warnings
        assert finding.category is FindingCategory.LEVEL_DRIFT
        assert finding.entity_id == cid
        assert finding.stored == 1
        assert finding.expected == 3
        assert dict(finding.patch) == {"level": 3}

    def test_invalid_character_record(self, ctx, seed):
        seed.character(experience=-10)
        report = check(ctx, "user-1")
        assert FindingCategory.INVALID_RECORD in _categories(report.errors)


class TestHabitChecks:
    def test_streak_drift(self, ctx, seed):
        cid = seed.character()
        hid = seed.habit(
            cid,
            completed_dates=[TODAY, TODAY - timedelta(days=1)],
            current_streak=5,
            longest_streak=5,
        )
        report = check(ctx, "user-1")
        (finding,) = report.warnings
        assert finding.category is FindingCategory.STREAK_DRIFT
        assert finding.entity_id == hid
        assert finding.stored == 5
        assert finding.expected == 2
        assert dict(finding.patch) == {"current_streak": 2, "longest_streak": 5}

    def test_current_longer_than_longest(self, ctx, seed):
        cid = seed.character()
        seed.habit(
            cid,
            completed_dates=[TODAY, TODAY - timedelta(days=1)],
            current_streak=2,
            longest_streak=1,
        )
        report = check(ctx, "user-1")
        assert _categories(report.warnings) == [FindingCategory.STREAK_ORDER]
        assert dict(report.warnings[0].patch) == {"current_streak": 2, "longest_streak": 2}

    def test_invalid_frequency(self, ctx, seed):
        cid = seed.character()
        hid = seed.habit(cid, frequency="hourly")
        report = check(ctx, "user-1")
        (finding,) = report.errors
        assert finding.category is FindingCategory.INVALID_RECORD
        assert finding.entity_id == hid
        assert finding.severity is Severity.ERROR

    def test_wrong_character_reference(self, ctx, seed):
        seed.character()
        other = seed.character(user_id="user-2")
        seed.habit(other)
        report = check(ctx, "user-1")
        assert _categories(report.errors) == [FindingCategory.CHARACTER_REFERENCE]

    def test_reference_not_checked_without_unique_character(self, ctx, seed):
        other = seed.character(user_id="user-2")
        seed.habit(other)
        report = check(ctx, "user-1")
        assert _categories(report.errors) == [FindingCategory.CHARACTER_COUNT]


class TestGoalChecks:
    def test_complete_goal_without_timestamp(self, ctx, seed):
        cid = seed.character()
        gid = seed.goal(cid, progress=100)
        report = check(ctx, "user-1")
        assert report.errors == []
        (finding,) = report.warnings
        assert finding.category is FindingCategory.GOAL_COMPLETION
        assert finding.entity_id == gid
        assert dict(finding.patch) == {"completed_at": FIXED_NOW}

    def test_incomplete_goal_with_timestamp(self, ctx, seed):
        cid = seed.character()
        seed.goal(cid, progress=60, completed_at=FIXED_NOW)
        report = check(ctx, "user-1")
        (finding,) = report.warnings
        assert dict(finding.patch) == {"completed_at": None}

    def test_progress_out_of_range(self, ctx, seed):
        cid = seed.character()
        seed.goal(cid, progress=140)
        report = check(ctx, "user-1")
        assert _categories(report.errors) == [FindingCategory.INVALID_RECORD]


class TestReport:
    def test_collects_everything(self, ctx, seed):
        cid = seed.character(level=1, experience=500)
        seed.habit(cid, frequency="yearly")
        seed.habit(cid, completed_dates=[TODAY], current_streak=3, longest_streak=3)
        seed.goal(cid, progress=100)

        report = check(ctx, "user-1")
        assert len(report.errors) == 1
        assert sorted(_categories(report.warnings)) == sorted([
            FindingCategory.LEVEL_DRIFT,
            FindingCategory.STREAK_DRIFT,
            FindingCategory.GOAL_COMPLETION,
        ])
        assert report.recommendations == [
            RECOMMENDATIONS[FindingCategory.INVALID_RECORD],
            RECOMMENDATIONS[FindingCategory.GOAL_COMPLETION],
            RECOMMENDATIONS[FindingCategory.STREAK_DRIFT],
            RECOMMENDATIONS[FindingCategory.LEVEL_DRIFT],
        ]

    def test_recommendations_deduplicated(self):
        report = IntegrityReport(user_id="u")
        for category in (FindingCategory.STREAK_DRIFT, FindingCategory.STREAK_ORDER):
            report.add(Finding(
                severity=Severity.WARNING,
                category=category,
                entity_type="habit",
                entity_id="h1",
                message="drift",
            ))
        assert generate_recommendations(report) == [
            RECOMMENDATIONS[FindingCategory.STREAK_DRIFT],
        ]

    def test_to_dict_is_json_serializable(self, ctx, seed):
        cid = seed.character()
        seed.goal(cid, progress=100)
        payload = check(ctx, "user-1").to_dict()
        decoded = json.loads(json.dumps(payload))
        assert decoded["is_valid"] is False
        assert decoded["warnings"][0]["expected"] == FIXED_NOW.isoformat()

    def test_storage_failure_aborts(self, ctx, store):
        class Broken:
            def __getattr__(self, name):
                return getattr(store, name)

            def list_habits(self, user_id):
                raise StorageError("database unavailable")

        ctx.store = Broken()
        with pytest.raises(StorageError):
            check(ctx, "user-1")
