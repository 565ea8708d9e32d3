"""Tests for git_checkpoints.lock."""

import fcntl
import os
from pathlib import Path

import pytest

from git_checkpoints.checkpoint import CheckpointManager
from git_checkpoints.errors import LOCK_TIMEOUT
from git_checkpoints.lock import LOCK_FILE_NAME, LockTimeout, get_lock_path, repository_lock


@pytest.fixture
def held_lock(repo: Path):
    """Hold the repository lock through a separate open file."""
    fd = os.open(get_lock_path(repo), os.O_CREAT | os.O_RDWR, 0o600)
    fcntl.flock(fd, fcntl.LOCK_EX)
    yield
    fcntl.flock(fd, fcntl.LOCK_UN)
    os.close(fd)


def test_lock_path_is_inside_git_dir(repo: Path):
    assert get_lock_path(repo) == repo.resolve() / ".git" / LOCK_FILE_NAME


def test_acquire_and_release(repo: Path):
    with repository_lock(repo, timeout=1) as lock_path:
        assert lock_path.exists()
    # Released: can be taken again immediately
    with repository_lock(repo, timeout=0.1):
        pass


def test_timeout_when_held(repo: Path, held_lock):
    with pytest.raises(LockTimeout) as exc_info:
        with repository_lock(repo, timeout=0.2):
            pass
    assert exc_info.value.timeout == 0.2


def test_outside_repo(outside_dir: Path):
    with pytest.raises(FileNotFoundError):
        with repository_lock(outside_dir):
            pass


def test_manager_reports_lock_timeout(repo: Path, held_lock):
    (repo / "new.txt").write_text("x\n")
    manager = CheckpointManager(repo_path=repo, lock_timeout=0.2)

    result = manager.create("blocked")

    assert result.error.code == LOCK_TIMEOUT
    assert manager.list().unwrap() == []


def test_worktrees_share_one_lock(repo: Path, git):
    worktree = repo.parent / "worktree"
    git(repo, "worktree", "add", "-q", str(worktree))

    assert get_lock_path(worktree) == get_lock_path(repo)
    with repository_lock(repo, timeout=1):
        with pytest.raises(LockTimeout):
            with repository_lock(worktree, timeout=0.2):
                pass
