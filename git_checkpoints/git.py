"""Git CLI helpers and repository probing.

Thin wrappers around the ``git`` binary used by the snapshot store and the
configuration layer. Nothing here raises on command failure: helpers return
``None``, ``False`` or a failed ``CompletedProcess`` so that callers fail
safe toward inaction ("no repository", "no changes").
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

# Hash of the empty tree, used as the base when HEAD is unborn
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

GIT_TIMEOUT = 30
REMOTE_TIMEOUT = 60

# Identity used for snapshot commits when the user has none configured
# (typical for cron environments)
FALLBACK_NAME = "git-checkpoints"
FALLBACK_EMAIL = "git-checkpoints@localhost"


# =============================================================================
# Git CLI Helpers
# =============================================================================


def _git(
    args: list[str],
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: int = GIT_TIMEOUT,
    input: str | None = None,
) -> subprocess.CompletedProcess:
    """Run a git command and return the completed process.

    Timeouts and a missing git binary are reported as a failed process
    (returncode 1 with the reason in stderr) instead of raising.
    """
    cmd = ["git", *args]
    try:
        # Security: shell=False (default), args never pass through a shell
        return subprocess.run(
            cmd,  # noqa: S603, S607
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=env,
            input=input,
        )
    except subprocess.TimeoutExpired:
        logger.debug(f"Git command timed out: {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, 1, "", "Command timed out")
    except (FileNotFoundError, OSError) as e:
        logger.debug(f"Git command failed: {e}")
        return subprocess.CompletedProcess(cmd, 1, "", str(e))


def _run_git(
    args: list[str],
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: int = GIT_TIMEOUT,
) -> str | None:
    """Run a git command and return stripped stdout, or None on failure."""
    result = _git(args, cwd=cwd, env=env, timeout=timeout)
    if result.returncode == 0:
        return result.stdout.strip()
    logger.debug(f"git {' '.join(args)} exited {result.returncode}: {result.stderr.strip()}")
    return None


# =============================================================================
# Repository Probe
# =============================================================================


def is_git_repo(path: Path | None = None) -> bool:
    """Check if path is inside a git working tree."""
    return _run_git(["rev-parse", "--is-inside-work-tree"], cwd=path) == "true"


def get_toplevel(path: Path | None = None) -> Path | None:
    """Get the root directory of the working tree."""
    output = _run_git(["rev-parse", "--show-toplevel"], cwd=path)
    return Path(output) if output else None


def get_common_dir(path: Path | None = None) -> Path | None:
    """Get the .git directory shared by all worktrees of the repository."""
    output = _run_git(["rev-parse", "--git-common-dir"], cwd=path)
    if not output:
        return None
    common = Path(output)
    if not common.is_absolute():
        common = (path or Path.cwd()) / common
    return common.resolve()


def get_index_path(path: Path | None = None) -> Path | None:
    """Get the path of the index file (worktree aware)."""
    output = _run_git(["rev-parse", "--git-path", "index"], cwd=path)
    if not output:
        return None
    index = Path(output)
    if not index.is_absolute():
        index = (path or Path.cwd()) / index
    return index


def get_head(path: Path | None = None) -> str | None:
    """Get the full SHA of HEAD, or None on an unborn branch."""
    return _run_git(["rev-parse", "--verify", "--quiet", "HEAD"], cwd=path)


def readonly_env() -> dict[str, str]:
    """Environment that stops git from refreshing the index as a side effect."""
    return {**os.environ, "GIT_OPTIONAL_LOCKS": "0"}


def has_staged_changes(path: Path | None = None) -> bool:
    """Staged diff is non-empty."""
    # --quiet exits 1 when there are differences, >1 on error
    result = _git(["diff", "--cached", "--quiet"], cwd=path, env=readonly_env())
    return result.returncode == 1


def has_unstaged_changes(path: Path | None = None) -> bool:
    """Unstaged diff is non-empty."""
    return _git(["diff", "--quiet"], cwd=path, env=readonly_env()).returncode == 1


def list_untracked_files(path: Path | None = None) -> tuple[str, ...]:
    """Untracked files, excluding ignored ones."""
    result = _git(["ls-files", "--others", "--exclude-standard", "-z"], cwd=path)
    if result.returncode != 0:
        return ()
    return tuple(f for f in result.stdout.split("\0") if f)


def has_changes(path: Path | None = None) -> bool:
    """True if anything is staged, modified or untracked.

    The three conditions are checked independently; any one is enough.
    """
    return (
        has_staged_changes(path)
        or has_unstaged_changes(path)
        or bool(list_untracked_files(path))
    )


# =============================================================================
# Remotes and identity
# =============================================================================


def get_remotes(path: Path | None = None) -> tuple[str, ...]:
    """Names of configured remotes."""
    output = _run_git(["remote"], cwd=path)
    if not output:
        return ()
    return tuple(line.strip() for line in output.split("\n") if line.strip())


def get_default_remote(path: Path | None = None) -> str | None:
    """Remote used for checkpoint sync: origin if present, else the first one."""
    remotes = get_remotes(path)
    if not remotes:
        return None
    return "origin" if "origin" in remotes else remotes[0]


def identity_env(path: Path | None = None) -> dict[str, str]:
    """Environment for commit-creating commands.

    Starts from the current environment and fills in a fallback identity
    only for the parts git cannot resolve on its own.
    """
    env = dict(os.environ)
    if not _run_git(["config", "user.name"], cwd=path) and "GIT_AUTHOR_NAME" not in env:
        env["GIT_AUTHOR_NAME"] = FALLBACK_NAME
        env["GIT_COMMITTER_NAME"] = FALLBACK_NAME
    if not _run_git(["config", "user.email"], cwd=path) and "GIT_AUTHOR_EMAIL" not in env:
        env["GIT_AUTHOR_EMAIL"] = FALLBACK_EMAIL
        env["GIT_COMMITTER_EMAIL"] = FALLBACK_EMAIL
    return env
