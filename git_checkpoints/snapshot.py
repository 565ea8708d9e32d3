"""Snapshot store for git-checkpoints.

A checkpoint is a lightweight tag ``refs/tags/checkpoint/<name>`` pointing at
a stash-like commit:

    W  (tree = staged + unstaged + untracked)
    |\\
    | I  (tree = staged index)
    |/
    HEAD

The commits are built against a temporary copy of the index
(``GIT_INDEX_FILE``), so creating a snapshot never writes the real index or
the working tree. Because ``W`` has the same shape as ``git stash create``
output, ``git stash apply <W>`` re-applies it with a three-way merge.

Ignored files are not captured.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from git_checkpoints.errors import (
    INVALID_NAME,
    CheckpointError,
    Result,
    apply_conflict,
    duplicate_name,
    err,
    git_failed,
    no_such_checkpoint,
    not_a_repository,
    ok,
    remote_failed,
)
from git_checkpoints.git import (
    EMPTY_TREE,
    REMOTE_TIMEOUT,
    _git,
    _run_git,
    get_default_remote,
    get_head,
    get_index_path,
    get_toplevel,
    identity_env,
)
from git_checkpoints.types import CheckpointName, ObjectId

logger = logging.getLogger(__name__)

TAG_PREFIX = "checkpoint/"
REF_PREFIX = f"refs/tags/{TAG_PREFIX}"

AUTO_NAME_FORMAT = "auto_%Y%m%d_%H%M%S"
AUTO_NAME_PATTERN = re.compile(r"^auto_\d{8}_\d{6}$")

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class Checkpoint:
    """A named snapshot of working-tree state."""

    name: CheckpointName
    object_id: ObjectId
    created: datetime  # Aware, UTC

    @property
    def ref(self) -> str:
        return f"{REF_PREFIX}{self.name}"

    @property
    def is_auto(self) -> bool:
        return is_auto_name(self.name)

    @property
    def origin(self) -> str:
        """``auto`` or ``manual``, inferred from the name."""
        return "auto" if self.is_auto else "manual"


# =============================================================================
# Naming
# =============================================================================


def sanitize_name(name: str) -> CheckpointName:
    """Replace every character outside [a-zA-Z0-9._-] with '_'."""
    return CheckpointName(_UNSAFE_CHARS.sub("_", name))


def generate_auto_name(now: datetime) -> CheckpointName:
    """Timestamped name for automatic checkpoints (second resolution)."""
    return CheckpointName(now.astimezone(UTC).strftime(AUTO_NAME_FORMAT))


def is_auto_name(name: str) -> bool:
    """Automatic checkpoints are recognised by name alone."""
    return bool(AUTO_NAME_PATTERN.match(name))


def validate_name(name: CheckpointName, path: Path | None = None) -> Result[CheckpointName, CheckpointError]:
    """Check that a sanitized name still forms a legal ref (e.g. no '..')."""
    if not name:
        return err(CheckpointError(code=INVALID_NAME, message="Checkpoint name is empty"))
    result = _git(["check-ref-format", f"{REF_PREFIX}{name}"], cwd=path)
    if result.returncode != 0:
        return err(
            CheckpointError(
                code=INVALID_NAME,
                message=f"'{name}' is not a valid checkpoint name",
                context={"name": name},
            )
        )
    return ok(name)


# =============================================================================
# Snapshot objects
# =============================================================================


def _date_env(env: dict[str, str], when: datetime | None) -> dict[str, str]:
    if when is None:
        return env
    stamp = f"{int(when.timestamp())} +0000"
    return {**env, "GIT_AUTHOR_DATE": stamp, "GIT_COMMITTER_DATE": stamp}


def create_snapshot_object(
    message: str,
    path: Path | None = None,
    when: datetime | None = None,
) -> Result[ObjectId | None, CheckpointError]:
    """Build a detached stash-like commit of the current dirty state.

    Args:
        message: Commit message for the snapshot
        path: Any directory inside the repository
        when: Creation time recorded on the commit (defaults to now)

    Returns:
        Ok(object id), Ok(None) when the tree is clean, or Err on git failure.
        No reference is created.
    """
    toplevel = get_toplevel(path)
    index_path = get_index_path(path)
    if toplevel is None or index_path is None:
        return err(not_a_repository(path))

    head = get_head(path)
    base_tree = _run_git(["rev-parse", f"{head}^{{tree}}"], cwd=toplevel) if head else EMPTY_TREE
    if base_tree is None:
        return err(git_failed(["rev-parse", "HEAD^{tree}"]))

    env = _date_env(identity_env(toplevel), when)

    with tempfile.TemporaryDirectory(prefix="git-checkpoints-") as tmp:
        tmp_index = Path(tmp) / "index"
        if index_path.exists():
            shutil.copyfile(index_path, tmp_index)
        index_env = {**env, "GIT_INDEX_FILE": str(tmp_index)}

        # Fails on unmerged entries, which cannot be captured as a tree
        index_tree = _git(["write-tree"], cwd=toplevel, env=index_env)
        if index_tree.returncode != 0:
            return err(git_failed(["write-tree"], index_tree.stderr))

        added = _git(["add", "--all"], cwd=toplevel, env=index_env)
        if added.returncode != 0:
            return err(git_failed(["add", "--all"], added.stderr))

        work_tree = _git(["write-tree"], cwd=toplevel, env=index_env)
        if work_tree.returncode != 0:
            return err(git_failed(["write-tree"], work_tree.stderr))

    index_sha = index_tree.stdout.strip()
    work_sha = work_tree.stdout.strip()
    if index_sha == base_tree and work_sha == base_tree:
        logger.debug("Nothing to capture, tree matches HEAD")
        return ok(None)

    parents = ["-p", head] if head else []
    index_commit = _git(
        ["commit-tree", index_sha, *parents, "-m", f"index on {message}"],
        cwd=toplevel,
        env=env,
    )
    if index_commit.returncode != 0:
        return err(git_failed(["commit-tree"], index_commit.stderr))

    snapshot = _git(
        ["commit-tree", work_sha, *parents, "-p", index_commit.stdout.strip(), "-m", message],
        cwd=toplevel,
        env=env,
    )
    if snapshot.returncode != 0:
        return err(git_failed(["commit-tree"], snapshot.stderr))

    object_id = ObjectId(snapshot.stdout.strip())
    logger.debug(f"Built snapshot object {object_id[:8]}: {message}")
    return ok(object_id)


# =============================================================================
# References
# =============================================================================


def _parse_ref_line(line: str) -> Checkpoint | None:
    parts = line.split("|")
    if len(parts) != 3:
        return None
    refname, object_id, timestamp = parts
    if not refname.startswith(REF_PREFIX):
        return None
    try:
        created = datetime.fromtimestamp(int(timestamp), UTC)
    except ValueError:
        return None
    return Checkpoint(
        name=CheckpointName(refname[len(REF_PREFIX):]),
        object_id=ObjectId(object_id),
        created=created,
    )


def list_snapshots(path: Path | None = None) -> list[Checkpoint]:
    """All checkpoints, most recent first.

    Ordered by creation time; names only break ties between checkpoints
    created in the same second.
    """
    output = _run_git(
        [
            "for-each-ref",
            "--sort=-creatordate",
            "--format=%(refname)|%(objectname)|%(creatordate:unix)",
            REF_PREFIX,
        ],
        cwd=path,
    )
    if not output:
        return []

    checkpoints = [cp for cp in map(_parse_ref_line, output.split("\n")) if cp is not None]
    checkpoints.sort(key=lambda cp: (cp.created, cp.name), reverse=True)
    return checkpoints


def get_snapshot(name: str, path: Path | None = None) -> Checkpoint | None:
    """Look up a single checkpoint by name."""
    output = _run_git(
        [
            "for-each-ref",
            "--format=%(refname)|%(objectname)|%(creatordate:unix)",
            f"{REF_PREFIX}{name}",
        ],
        cwd=path,
    )
    if not output:
        return None
    for line in output.split("\n"):
        checkpoint = _parse_ref_line(line)
        # for-each-ref matches prefixes, so insist on the exact name
        if checkpoint is not None and checkpoint.name == name:
            return checkpoint
    return None


def snapshot_exists(name: str, path: Path | None = None) -> bool:
    return _git(["show-ref", "--verify", "--quiet", f"{REF_PREFIX}{name}"], cwd=path).returncode == 0


def tag_snapshot(
    name: CheckpointName,
    object_id: ObjectId,
    path: Path | None = None,
) -> Result[Checkpoint, CheckpointError]:
    """Bind ``checkpoint/<name>`` to a snapshot object.

    The existence check is explicit so a duplicate is reported as such
    rather than as a generic git failure.
    """
    if snapshot_exists(name, path):
        return err(duplicate_name(name))

    result = _git(["tag", f"{TAG_PREFIX}{name}", object_id], cwd=path)
    if result.returncode != 0:
        return err(git_failed(["tag", f"{TAG_PREFIX}{name}"], result.stderr))

    checkpoint = get_snapshot(name, path)
    if checkpoint is None:
        return err(git_failed(["for-each-ref", f"{REF_PREFIX}{name}"]))
    logger.info(f"Created checkpoint {name} -> {object_id[:8]}")
    return ok(checkpoint)


# =============================================================================
# Remote sync
# =============================================================================


def push_snapshot(name: str, path: Path | None = None) -> Result[str | None, CheckpointError]:
    """Push a checkpoint ref to the default remote.

    Returns:
        Ok(remote name), Ok(None) when no remote is configured, or
        Err(REMOTE_OPERATION_FAILED)
    """
    remote = get_default_remote(path)
    if remote is None:
        return ok(None)

    result = _git(
        ["push", "--quiet", remote, f"{REF_PREFIX}{name}"],
        cwd=path,
        timeout=REMOTE_TIMEOUT,
    )
    if result.returncode != 0:
        logger.warning(f"Push of checkpoint {name} to {remote} failed: {result.stderr.strip()}")
        return err(remote_failed(f"push checkpoint '{name}'", remote, result.stderr))
    return ok(remote)


def delete_snapshot(
    name: str,
    path: Path | None = None,
) -> Result[tuple[CheckpointError, ...], CheckpointError]:
    """Delete a checkpoint locally, then best-effort on the remote.

    Returns:
        Ok(warnings) once the local ref is gone; remote failures are
        returned as warnings, never as Err.
    """
    if not snapshot_exists(name, path):
        return err(no_such_checkpoint(name))

    result = _git(["tag", "--delete", f"{TAG_PREFIX}{name}"], cwd=path)
    if result.returncode != 0:
        return err(git_failed(["tag", "--delete", f"{TAG_PREFIX}{name}"], result.stderr))
    logger.info(f"Deleted checkpoint {name}")

    remote = get_default_remote(path)
    if remote is None:
        return ok(())

    remote_result = _git(
        ["push", "--quiet", remote, "--delete", f"{REF_PREFIX}{name}"],
        cwd=path,
        timeout=REMOTE_TIMEOUT,
    )
    if remote_result.returncode != 0:
        logger.debug(f"Remote delete of {name} failed: {remote_result.stderr.strip()}")
        return ok((remote_failed(f"delete checkpoint '{name}'", remote, remote_result.stderr),))
    return ok(())


# =============================================================================
# Apply
# =============================================================================


def _has_unmerged_paths(path: Path | None) -> bool:
    return bool(_run_git(["ls-files", "--unmerged"], cwd=path))


def apply_snapshot(name: str, path: Path | None = None) -> Result[Checkpoint, CheckpointError]:
    """Merge a checkpoint's changes into the working tree and index.

    The checkpoint itself is kept. On conflict, git's merge state and
    conflict markers are left in place for the user to resolve.
    """
    checkpoint = get_snapshot(name, path)
    if checkpoint is None:
        return err(no_such_checkpoint(name))

    result = _git(["stash", "apply", checkpoint.object_id], cwd=path)
    if result.returncode == 0:
        logger.info(f"Applied checkpoint {name}")
        return ok(checkpoint)

    output = "\n".join(part for part in (result.stdout, result.stderr) if part.strip())
    if "CONFLICT" in result.stdout or _has_unmerged_paths(path):
        logger.warning(f"Conflicts while applying checkpoint {name}")
        return err(apply_conflict(name, output))
    return err(git_failed(["stash", "apply", checkpoint.object_id], output))


def diff_snapshots(old: str, new: str, path: Path | None = None) -> bool | None:
    """Compare the full content of two snapshot objects.

    Returns:
        True if the trees differ, False if identical, None if git failed
    """
    result = _git(["diff", "--quiet", old, new], cwd=path)
    if result.returncode == 0:
        return False
    if result.returncode == 1:
        return True
    logger.debug(f"git diff {old[:8]} {new[:8]} failed: {result.stderr.strip()}")
    return None
