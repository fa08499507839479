"""Tests for kryten_counters.config module."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from kryten_counters.config import CommandsConfig, CountersConfig, load_config


class TestCountersConfig:
    """Test CountersConfig model parsing and validation."""

    def test_minimal_config(self):
        """Config with only required fields (nats, channels) should parse."""
        cfg = CountersConfig(
            nats={"servers": ["nats://localhost:4222"]},
            channels=[{"domain": "cytu.be", "channel": "test"}],
        )
        assert cfg.database.path == "counters.db"
        assert cfg.bot.username == "CounterBot"
        assert cfg.commands.prefix == "!"
        assert cfg.commands.default_max_increment == 10
        assert cfg.cooldowns.ttl_seconds == 3600
        assert cfg.features.screams is True
        assert cfg.overlay.kv_bucket == "kryten_counters_state"

    def test_full_config(self, sample_config_dict: dict):
        cfg = CountersConfig(**sample_config_dict)
        assert cfg.channels[0].channel == "testchannel"
        assert cfg.ignored_users == ["IgnoredBot"]
        assert cfg.milestones.thresholds["deaths"] == [10, 25, 50]

    def test_thresholds_sorted_and_lowercased(self):
        cfg = CountersConfig(
            nats={"servers": ["nats://localhost:4222"]},
            channels=[{"domain": "cytu.be", "channel": "t"}],
            milestones={"thresholds": {"Deaths": [50, 10, 10]}},
        )
        assert cfg.milestones.thresholds == {"deaths": [10, 50]}

    def test_default_broadcaster_settings(self, sample_config: CountersConfig):
        settings = sample_config.default_broadcaster_settings()
        assert settings.max_increment == 10
        assert settings.features.screams is True
        assert settings.thresholds_for("swears") == [5, 10]
        assert settings.notifications_enabled("bits") is False

    def test_default_max_increment_clamped_to_ceiling(self):
        cfg = CountersConfig(
            nats={"servers": ["nats://localhost:4222"]},
            channels=[{"domain": "cytu.be", "channel": "t"}],
            commands={"default_max_increment": 50, "max_increment_ceiling": 20},
        )
        assert cfg.default_broadcaster_settings().max_increment == 20

    @pytest.mark.parametrize("value,expected", [(0, 1), (-3, 1), (5, 5), (11, 10)])
    def test_clamp_max_increment(self, value, expected):
        assert CommandsConfig().clamp_max_increment(value) == expected


class TestLoadConfig:
    """load_config() YAML loading."""

    def test_load_yaml(self, tmp_path: Path, sample_config_dict: dict):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(sample_config_dict))
        cfg = load_config(str(path))
        assert cfg.bot.username == "TestBot"

    def test_env_expansion(self, tmp_path: Path, sample_config_dict: dict, monkeypatch):
        monkeypatch.setenv("COUNTERS_DB", "/data/c.db")
        monkeypatch.delenv("COUNTERS_BOT", raising=False)
        sample_config_dict["database"] = {"path": "${COUNTERS_DB}"}
        sample_config_dict["bot"] = {"username": "${COUNTERS_BOT:-FallbackBot}"}
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(sample_config_dict))

        cfg = load_config(str(path))
        assert cfg.database.path == "/data/c.db"
        assert cfg.bot.username == "FallbackBot"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_non_mapping(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(str(path))
