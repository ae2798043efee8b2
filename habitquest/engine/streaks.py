"""
habitquest.engine.streaks — Streak Calculator
==============================================

Pure calculation: completion history + frequency → current streak.
No database I/O.

A streak survives as long as each gap between consecutive completions
(and between the newest completion and *today*) is within the frequency's
tolerance: 1 day for daily habits, 7 for weekly, 30 for monthly.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime

from habitquest.constants import FREQUENCY_TOLERANCE_DAYS, Frequency

__all__ = ["calculate_streak", "normalize_dates", "tolerance_days"]


def tolerance_days(frequency: Frequency | str) -> int:
    """Maximum gap in days for *frequency*.

    Raises ``ValueError`` for an unknown frequency string.
    """
    return FREQUENCY_TOLERANCE_DAYS[Frequency(frequency)]


def _as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(value).date()


def normalize_dates(dates: Iterable[date | datetime | str]) -> list[date]:
    """Reduce to calendar days, drop same-day repeats, newest first."""
    return sorted({_as_date(d) for d in dates}, reverse=True)


def calculate_streak(
    dates: Iterable[date | datetime | str],
    frequency: Frequency | str,
    today: date | None = None,
) -> int:
    """Current streak for a completion history.

    Parameters
    ----------
    dates : Completion dates in any order; duplicates are fine.
    frequency : Habit frequency, decides the tolerated gap.
    today : Reference day (defaults to ``date.today()``).

    Returns 0 for an empty history or when the newest completion is
    older than the tolerance.
    """
    tolerance = tolerance_days(frequency)
    ordered = normalize_dates(dates)
    if not ordered:
        return 0

    if today is None:
        today = date.today()
    if (today - ordered[0]).days > tolerance:
        return 0

    streak = 1
    for newer, older in zip(ordered, ordered[1:]):
        if (newer - older).days > tolerance:
            break
        streak += 1
    return streak
