"""Tests for git_checkpoints.config."""

from pathlib import Path

import pytest
import yaml

from git_checkpoints.config import (
    CheckpointConfig,
    format_interval,
    get_user_config_path,
    get_user_dir,
    normalize_value,
    parse_bool,
    parse_count,
    parse_interval,
    remove_repo_config,
    set_config_value,
    set_paused,
)
from git_checkpoints.errors import INVALID_CONFIG


# =============================================================================
# Value parsing
# =============================================================================


class TestParsing:
    @pytest.mark.parametrize(
        ("value", "seconds"),
        [("5", 300), ("5m", 300), ("10s", 10), ("90S", 90), (" 15 ", 900), (1, 60)],
    )
    def test_parse_interval(self, value, seconds):
        assert parse_interval(value) == seconds

    @pytest.mark.parametrize("value", ["0", "0s", "-5", "abc", "5h", ""])
    def test_parse_interval_rejects(self, value):
        assert parse_interval(value) is None

    def test_format_interval(self):
        assert format_interval("5") == "5 minutes"
        assert format_interval("1m") == "1 minute"
        assert format_interval("10s") == "10s"

    def test_parse_bool(self):
        assert parse_bool("true") is True
        assert parse_bool("ON") is True
        assert parse_bool("0") is False
        assert parse_bool(False) is False
        assert parse_bool("maybe") is None

    def test_parse_count(self):
        assert parse_count("0") == 0
        assert parse_count(7) == 7
        assert parse_count("-1") is None
        assert parse_count("ten") is None
        assert parse_count(True) is None

    def test_normalize_value(self):
        assert normalize_value("interval", "10S").unwrap() == "10s"
        assert normalize_value("notify", "yes").unwrap() == "true"
        assert normalize_value("max_auto", " 3 ").unwrap() == "3"
        assert normalize_value("colour", "red").error.code == INVALID_CONFIG


# =============================================================================
# Paths
# =============================================================================


def test_user_dir_override(isolated_env: Path):
    assert get_user_dir() == isolated_env
    assert get_user_config_path() == isolated_env / "config.yaml"


def test_user_dir_default(monkeypatch):
    monkeypatch.delenv("GIT_CHECKPOINTS_HOME")
    assert get_user_dir() == Path.home() / ".git-checkpoints"


# =============================================================================
# CheckpointConfig
# =============================================================================


class TestCheckpointConfig:
    def test_defaults(self, repo: Path):
        config = CheckpointConfig.load(repo)
        assert config == CheckpointConfig()
        assert config.interval_seconds == 300

    def test_describe_defaults(self):
        assert CheckpointConfig().describe() == [
            "interval: 5 minutes",
            "notify:   false",
            "max_auto: 10",
            "auto_age_days: 30",
        ]

    def test_set_and_load(self, repo: Path, git):
        assert set_config_value("interval", "10s", repo).unwrap() == "10s"
        assert set_config_value("max_auto", "3", repo).unwrap() == "3"
        assert set_config_value("notify", "on", repo).unwrap() == "true"

        config = CheckpointConfig.load(repo)

        assert config.interval == "10s"
        assert config.interval_seconds == 10
        assert config.max_auto == 3
        assert config.notify is True
        assert "interval: 10s" in config.describe()
        # Stored under git-legal key names
        assert git(repo, "config", "--local", "checkpoints.max-auto") == "3"

    def test_set_rejects_invalid_values(self, repo: Path):
        assert set_config_value("interval", "soon", repo).error.code == INVALID_CONFIG
        assert set_config_value("auto_age_days", "-1", repo).error.code == INVALID_CONFIG
        assert CheckpointConfig.load(repo) == CheckpointConfig()

    def test_set_rejects_unknown_and_internal_keys(self, repo: Path):
        assert set_config_value("colour", "red", repo).error.code == INVALID_CONFIG
        assert set_config_value("paused", "true", repo).error.code == INVALID_CONFIG

    def test_get(self):
        config = CheckpointConfig(notify=True, max_auto=4)
        assert config.get("notify") == "true"
        assert config.get("max_auto") == "4"
        assert config.get("interval") == "5"

    def test_invalid_stored_value_falls_back_to_default(self, repo: Path, git):
        git(repo, "config", "--local", "checkpoints.max-auto", "lots")
        assert CheckpointConfig.load(repo).max_auto == 10

    def test_user_defaults(self, repo: Path, isolated_env: Path):
        (isolated_env / "config.yaml").write_text(
            yaml.safe_dump({"max_auto": 3, "notify": True, "paused": True})
        )

        config = CheckpointConfig.load(repo)

        assert config.max_auto == 3
        assert config.notify is True
        # Scheduler state is never taken from user defaults
        assert config.paused is False

    def test_repository_overrides_user_defaults(self, repo: Path, isolated_env: Path):
        (isolated_env / "config.yaml").write_text(yaml.safe_dump({"max_auto": 3}))
        set_config_value("max_auto", "7", repo)
        assert CheckpointConfig.load(repo).max_auto == 7

    def test_unreadable_user_defaults_ignored(self, repo: Path, isolated_env: Path):
        (isolated_env / "config.yaml").write_text("- just\n- a list\n")
        assert CheckpointConfig.load(repo) == CheckpointConfig()

    def test_paused_state(self, repo: Path):
        set_paused(True, repo).unwrap()
        assert CheckpointConfig.load(repo).paused is True
        set_paused(False, repo).unwrap()
        assert CheckpointConfig.load(repo).paused is False

    def test_remove_repo_config(self, repo: Path):
        set_config_value("interval", "15", repo)
        assert remove_repo_config(repo) is True
        assert CheckpointConfig.load(repo) == CheckpointConfig()
        assert remove_repo_config(repo) is False
