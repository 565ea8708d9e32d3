"""Advisory locking across git-checkpoints processes.

Scheduled ``auto`` runs and manual commands are separate processes that
read and then write the same ref namespace. They serialize on a lock file
inside the git directory shared by every worktree of the repository for the duration of create, delete
and prune. ``flock`` locks are released by the kernel if a process dies.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from git_checkpoints.git import get_common_dir

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "git-checkpoints.lock"
DEFAULT_TIMEOUT = 30.0
POLL_INTERVAL = 0.1


class LockTimeout(Exception):
    """Another git-checkpoints process held the lock for too long."""

    def __init__(self, lock_path: Path, timeout: float):
        super().__init__(f"Timed out after {timeout:.0f}s waiting for {lock_path}")
        self.lock_path = lock_path
        self.timeout = timeout


def get_lock_path(repo_path: Path | None = None) -> Path | None:
    git_dir = get_common_dir(repo_path)
    return git_dir / LOCK_FILE_NAME if git_dir else None


@contextmanager
def repository_lock(repo_path: Path | None = None, timeout: float = DEFAULT_TIMEOUT) -> Iterator[Path]:
    """Hold the repository's checkpoint lock.

    Raises:
        LockTimeout: lock not acquired within ``timeout`` seconds
        FileNotFoundError: not inside a git repository
    """
    lock_path = get_lock_path(repo_path)
    if lock_path is None:
        raise FileNotFoundError("Not a git repository")

    fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o600)
    try:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise LockTimeout(lock_path, timeout) from None
                time.sleep(POLL_INTERVAL)

        logger.debug(f"Acquired {lock_path}")
        try:
            yield lock_path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug(f"Released {lock_path}")
    finally:
        os.close(fd)
