"""
tests/test_config.py — YAML Configuration Loader
=================================================
"""

from __future__ import annotations

import pytest

from habitquest.config import HabitQuestConfig, load_config


class TestLoadConfig:
    def test_defaults(self):
        cfg = HabitQuestConfig()
        assert cfg.xp_per_level == 100
        assert cfg.attribute_increase_chance == 0.7
        assert cfg.scan_concurrency == 8

    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("xp_per_level: 250\nscan_timeout_seconds: 12\nretry_attempts: 5\n")
        cfg = load_config(path)
        assert cfg.xp_per_level == 250
        assert cfg.scan_timeout_seconds == 12.0
        assert isinstance(cfg.scan_timeout_seconds, float)
        assert cfg.retry_attempts == 5
        assert cfg.scan_concurrency == 8

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == HabitQuestConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("xp_per_levle: 100\n")
        with pytest.raises(KeyError):
            load_config(path)

    @pytest.mark.parametrize(
        "body",
        ["xp_per_level: 0\n", "attribute_increase_chance: 1.5\n", "scan_concurrency: 0\n"],
    )
    def test_out_of_range(self, tmp_path, body):
        path = tmp_path / "config.yaml"
        path.write_text(body)
        with pytest.raises(ValueError):
            load_config(path)

    def test_frozen(self):
        cfg = HabitQuestConfig()
        with pytest.raises(AttributeError):
            cfg.xp_per_level = 5
