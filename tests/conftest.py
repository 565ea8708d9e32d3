"""Shared fixtures: throwaway git repositories and an isolated user dir."""

import logging
import shutil
import subprocess
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from git_checkpoints.logging import LOGGER_NAME
from git_checkpoints.schedule import MARKER_PREFIX


def _run(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def _init_git_repo(path: Path, commit: bool = True) -> Path:
    """Initialize a git repo with a configured identity and one commit."""
    _run(path, "init", "-q")
    _run(path, "config", "user.email", "test@test.com")
    _run(path, "config", "user.name", "Test User")
    _run(path, "config", "commit.gpgsign", "false")
    _run(path, "config", "tag.gpgsign", "false")
    if commit:
        (path / "README.md").write_text("hello\n")
        _run(path, "add", "README.md")
        _run(path, "commit", "-q", "-m", "initial")
    return path


class FakeRegistrar:
    """In-memory crontab."""

    available = True

    def __init__(self, lines: list[str] | None = None):
        self.lines = list(lines or [])

    def has(self, marker: str) -> bool:
        return any(line.endswith(marker) for line in self.lines)

    def install(self, marker: str, line: str) -> bool:
        self.lines = [existing for existing in self.lines if not existing.endswith(marker)]
        self.lines.append(line)
        return True

    def remove(self, marker: str) -> bool:
        kept = [line for line in self.lines if not line.endswith(marker)]
        removed = len(kept) != len(self.lines)
        self.lines = kept
        return removed

    def remove_all(self) -> int:
        kept = [line for line in self.lines if MARKER_PREFIX not in line]
        removed = len(self.lines) - len(kept)
        self.lines = kept
        return removed


class FakeNotifier:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    def send(self, title: str, message: str) -> bool:
        self.sent.append((title, message))
        return True


def ticking_clock(start: datetime, step: timedelta = timedelta(minutes=1)):
    """Clock that advances by ``step`` on every call."""
    state = {"now": start - step}

    def clock() -> datetime:
        state["now"] += step
        return state["now"]

    return clock


@pytest.fixture(autouse=True)
def isolated_env(tmp_path_factory, monkeypatch):
    """Keep tests away from the real user dir and global git config."""
    home = tmp_path_factory.mktemp("checkpoints-home")
    global_config = home / "gitconfig"
    global_config.write_text("")
    monkeypatch.setenv("GIT_CHECKPOINTS_HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv("GIT_CHECKPOINTS_DEBUG", raising=False)
    for var in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def git():
    """Run a git command in a directory and return its stdout."""
    return _run


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """A repository with one committed file and a clean working tree."""
    if shutil.which("git") is None:
        pytest.skip("Git not available")
    path = tmp_path / "repo"
    path.mkdir()
    return _init_git_repo(path)


@pytest.fixture
def empty_repo(tmp_path: Path) -> Path:
    """A repository on an unborn branch."""
    if shutil.which("git") is None:
        pytest.skip("Git not available")
    path = tmp_path / "empty"
    path.mkdir()
    return _init_git_repo(path, commit=False)


@pytest.fixture
def remote(tmp_path: Path, repo: Path) -> Path:
    """A bare repository registered as the repo's origin."""
    bare = tmp_path / "remote.git"
    _run(tmp_path, "init", "-q", "--bare", str(bare))
    _run(repo, "remote", "add", "origin", str(bare))
    return bare


@pytest.fixture
def outside_dir(tmp_path: Path) -> Path:
    """A directory that is not inside any repository."""
    if shutil.which("git") is None:
        pytest.skip("Git not available")
    path = tmp_path / "outside"
    path.mkdir()
    return path


@pytest.fixture
def fake_registrar() -> FakeRegistrar:
    return FakeRegistrar()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def start_time() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def make_clock():
    return ticking_clock


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers the CLI installed on streams that no longer exist."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True
