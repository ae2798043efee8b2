"""
HabitQuest — Character Progression & Data-Integrity Engine
============================================================
Turns completed habits and goals into experience, levels, attribute gains
and achievements, and independently re-derives that state from the raw
activity records to detect and repair drift.

Package layout::

    habitquest/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Attributes, milestones, THE level formula
    ├── errors.py          # Exception taxonomy
    ├── schemas.py         # pydantic record schemas
    ├── __main__.py        # CLI (python -m habitquest)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (characters, habits, goals, log)
    ├── engine/
    │   ├── streaks.py     # Streak calculator
    │   ├── leveling.py    # Leveling policy
    │   └── achievements.py # Achievement rule evaluation
    └── services/
        ├── context.py             # Injected collaborators
        ├── store.py               # Repository protocol + SQLAlchemy store
        ├── retry.py               # Exponential backoff
        ├── progression_service.py # apply_experience()
        ├── activity_service.py    # Habit completions / goal progress
        ├── integrity_service.py   # check()
        ├── repair_service.py      # repair()
        ├── scan_service.py        # Bounded fan-out over many users
        ├── monitor.py             # Performance monitor
        └── error_reporter.py      # Bounded async error-report queue
"""

__version__ = "0.1.0"
