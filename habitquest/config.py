"""
habitquest.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for gameplay tuning and operational limits.  Secrets
(``DATABASE_URL``) never live here; they come from the environment.

Usage::

    from habitquest.config import load_config

    cfg = load_config()           # reads ./config.yaml by default
    print(cfg.xp_per_level)       # 100
    print(cfg.scan_concurrency)   # 8
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from habitquest.constants import ATTRIBUTE_INCREASE_CHANCE, XP_PER_LEVEL


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class HabitQuestConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every key is optional in the YAML file; omitted keys keep the defaults
    below.
    """

    # Progression
    xp_per_level: int = XP_PER_LEVEL
    attribute_increase_chance: float = ATTRIBUTE_INCREASE_CHANCE

    # Storage retries
    retry_attempts: int = 3
    retry_base_delay: float = 0.2   # seconds, doubled per attempt
    retry_max_delay: float = 5.0

    # Batch scanning
    scan_concurrency: int = 8
    scan_timeout_seconds: float = 30.0

    # Error reporting
    error_queue_size: int = 100
    error_drain_interval: float = 5.0

    def __post_init__(self) -> None:
        if self.xp_per_level <= 0:
            raise ValueError("xp_per_level must be positive")
        if not 0.0 <= self.attribute_increase_chance <= 1.0:
            raise ValueError("attribute_increase_chance must be within [0, 1]")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.scan_concurrency < 1:
            raise ValueError("scan_concurrency must be at least 1")
        if self.error_queue_size < 1:
            raise ValueError("error_queue_size must be at least 1")


_INT_KEYS = {"xp_per_level", "retry_attempts", "scan_concurrency", "error_queue_size"}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HabitQuestConfig:
    """Read *path* and return a :class:`HabitQuestConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If the file contains a key this version does not understand.
    ValueError
        If a value is out of range.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    known = {f.name for f in fields(HabitQuestConfig)}
    unknown = set(raw) - known
    if unknown:
        raise KeyError(f"Unknown configuration keys: {sorted(unknown)}")

    values = {
        key: int(value) if key in _INT_KEYS else float(value)
        for key, value in raw.items()
    }
    return HabitQuestConfig(**values)
