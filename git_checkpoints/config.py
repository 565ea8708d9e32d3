"""Configuration management for git-checkpoints.

Storage Structure
-----------------
Settings live in git's own config, scoped to one repository, so there is no
separate state file to keep in sync:

<repo>/.git/config
    [checkpoints]
        interval = 5          # minutes, or "10s" for seconds
        notify = false
        max-auto = 10         # 0 disables count-based pruning
        auto-age-days = 30    # 0 disables age-based pruning
        paused = false        # scheduler state, managed by pause/resume

~/.git-checkpoints/           # User-level (override with GIT_CHECKPOINTS_HOME)
├── config.yaml               # Optional defaults for new repositories
├── wrappers/                 # Sub-minute scheduler scripts
└── logs/                     # Debug log (GIT_CHECKPOINTS_DEBUG=1)

Git forbids underscores in config keys, so the user-facing names
``max_auto`` / ``auto_age_days`` map to ``max-auto`` / ``auto-age-days``.

Cascade: repository git config → user config.yaml → built-in defaults.
The configuration is loaded once per invocation and passed explicitly to
the checkpoint manager.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from git_checkpoints.errors import (
    INVALID_CONFIG,
    CheckpointError,
    Result,
    err,
    git_failed,
    ok,
)
from git_checkpoints.git import _git, _run_git

logger = logging.getLogger(__name__)

CONFIG_SECTION = "checkpoints"

# User-facing key -> git config key
GIT_KEYS = {
    "interval": f"{CONFIG_SECTION}.interval",
    "notify": f"{CONFIG_SECTION}.notify",
    "max_auto": f"{CONFIG_SECTION}.max-auto",
    "auto_age_days": f"{CONFIG_SECTION}.auto-age-days",
    "paused": f"{CONFIG_SECTION}.paused",
}

# Keys settable through `config set` (paused is owned by pause/resume)
USER_KEYS = ("interval", "notify", "max_auto", "auto_age_days")

DEFAULT_INTERVAL = "5"

_INTERVAL_PATTERN = re.compile(r"^(\d+)([sm]?)$")
_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def get_user_dir() -> Path:
    """User-level directory for wrappers, logs and defaults."""
    override = os.environ.get("GIT_CHECKPOINTS_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".git-checkpoints"


def get_user_config_path() -> Path:
    return get_user_dir() / "config.yaml"


# =============================================================================
# Value parsing
# =============================================================================


def parse_interval(value: Any) -> int | None:
    """Parse an interval into seconds.

    ``"15"`` and ``"15m"`` are minutes, ``"10s"`` is seconds. Returns None
    for anything else, including zero.
    """
    match = _INTERVAL_PATTERN.match(str(value).strip().lower())
    if not match:
        return None
    amount = int(match.group(1))
    if amount <= 0:
        return None
    return amount if match.group(2) == "s" else amount * 60


def format_interval(value: str) -> str:
    """Human-readable interval, e.g. ``5 minutes`` or ``10s``."""
    text = str(value).strip().lower()
    seconds = parse_interval(text)
    if seconds is None:
        return text
    if text.endswith("s"):
        return text
    minutes = seconds // 60
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


def parse_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return None


def parse_count(value: Any) -> int | None:
    """Non-negative integer, or None."""
    if isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if number >= 0 else None


def normalize_value(key: str, value: Any) -> Result[str, CheckpointError]:
    """Validate a user-supplied value and return its stored form."""
    if key not in GIT_KEYS:
        return err(
            CheckpointError(
                code=INVALID_CONFIG,
                message=f"Unknown config key: {key}",
                context={"valid_keys": list(USER_KEYS)},
            )
        )

    if key == "interval":
        if parse_interval(value) is None:
            return err(
                CheckpointError(
                    code=INVALID_CONFIG,
                    message=f"Invalid interval: {value} (use minutes like 15, or seconds like 30s)",
                )
            )
        return ok(str(value).strip().lower())

    if key in ("notify", "paused"):
        parsed = parse_bool(value)
        if parsed is None:
            return err(
                CheckpointError(code=INVALID_CONFIG, message=f"Invalid boolean value: {value}")
            )
        return ok("true" if parsed else "false")

    parsed_count = parse_count(value)
    if parsed_count is None:
        return err(
            CheckpointError(
                code=INVALID_CONFIG,
                message=f"Invalid value for {key}: {value} (expected a non-negative integer)",
            )
        )
    return ok(str(parsed_count))


# =============================================================================
# CheckpointConfig
# =============================================================================


@dataclass
class CheckpointConfig:
    """Per-repository checkpoint settings."""

    interval: str = DEFAULT_INTERVAL
    notify: bool = False
    max_auto: int = 10
    auto_age_days: int = 30
    paused: bool = False

    @property
    def interval_seconds(self) -> int:
        return parse_interval(self.interval) or parse_interval(DEFAULT_INTERVAL)

    @classmethod
    def load(cls, repo_path: Path | None = None) -> "CheckpointConfig":
        """Load with repository → user → default cascade."""
        values: dict[str, Any] = {}
        values.update(_load_user_defaults())
        values.update(_load_git_config(repo_path))
        return cls._from_dict(values)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "CheckpointConfig":
        """Create config from raw values, falling back to defaults on bad input."""
        config = cls()
        for key, raw in data.items():
            normalized = normalize_value(key, raw)
            if not normalized.ok:
                logger.warning(f"Ignoring config {key}={raw!r}: {normalized.error.message}")
                continue
            value = normalized.value
            if key == "interval":
                config.interval = value
            elif key in ("notify", "paused"):
                setattr(config, key, value == "true")
            else:
                setattr(config, key, int(value))
        return config

    def get(self, key: str) -> str:
        """Stored form of a single value."""
        value = getattr(self, key)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def describe(self) -> list[str]:
        """Lines for `config get`."""
        return [
            f"interval: {format_interval(self.interval)}",
            f"notify:   {self.get('notify')}",
            f"max_auto: {self.max_auto}",
            f"auto_age_days: {self.auto_age_days}",
        ]


def _load_git_config(repo_path: Path | None) -> dict[str, str]:
    """Values from the repository's local git config."""
    output = _run_git(
        ["config", "--local", "--get-regexp", rf"^{CONFIG_SECTION}\."],
        cwd=repo_path,
    )
    if not output:
        return {}

    by_git_key = {git_key: key for key, git_key in GIT_KEYS.items()}
    values = {}
    for line in output.split("\n"):
        git_key, _, value = line.partition(" ")
        # git reports keys lowercased
        key = by_git_key.get(git_key.lower())
        if key:
            values[key] = value
    return values


def _load_user_defaults() -> dict[str, Any]:
    """Values from the optional user-level config.yaml."""
    config_path = get_user_config_path()
    if not config_path.exists():
        return {}
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read {config_path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: expected a mapping")
        return {}
    # Only known fields, and never scheduler state
    return {k: v for k, v in data.items() if k in USER_KEYS}


# =============================================================================
# Writing
# =============================================================================


def _write_git_value(key: str, value: str, repo_path: Path | None) -> Result[str, CheckpointError]:
    git_key = GIT_KEYS[key]
    result = _git(["config", "--local", git_key, value], cwd=repo_path)
    if result.returncode != 0:
        return err(git_failed(["config", "--local", git_key], result.stderr))
    logger.debug(f"Set {git_key} = {value}")
    return ok(value)


def set_config_value(key: str, value: Any, repo_path: Path | None = None) -> Result[str, CheckpointError]:
    """Validate and persist one user-settable key."""
    if key not in USER_KEYS:
        return err(
            CheckpointError(
                code=INVALID_CONFIG,
                message=f"Unknown config key: {key}",
                context={"valid_keys": list(USER_KEYS)},
            )
        )
    normalized = normalize_value(key, value)
    if not normalized.ok:
        return normalized
    return _write_git_value(key, normalized.value, repo_path)


def set_paused(paused: bool, repo_path: Path | None = None) -> Result[str, CheckpointError]:
    """Persist scheduler state."""
    return _write_git_value("paused", "true" if paused else "false", repo_path)


def remove_repo_config(repo_path: Path | None = None) -> bool:
    """Drop the whole [checkpoints] section. False if it did not exist."""
    result = _git(["config", "--local", "--remove-section", CONFIG_SECTION], cwd=repo_path)
    return result.returncode == 0
