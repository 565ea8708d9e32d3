"""Duplicate detection for automatic checkpoints.

Scheduled runs call ``auto`` every few minutes; without this check an idle
but dirty working tree would produce an identical checkpoint on every tick.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from git_checkpoints.errors import CheckpointError, Result, ok
from git_checkpoints.snapshot import (
    Checkpoint,
    create_snapshot_object,
    diff_snapshots,
    list_snapshots,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiffVerdict:
    """Whether the current state is worth a new checkpoint."""

    differs: bool
    last: Checkpoint | None = None  # Most recent checkpoint compared against


def differs_from_last(
    path: Path | None = None,
    when: datetime | None = None,
) -> Result[DiffVerdict, CheckpointError]:
    """Compare the current dirty state with the most recent checkpoint.

    Builds a transient, unreferenced snapshot object to diff against the
    last checkpoint's object. No refs, index or working tree are touched;
    the candidate object is left for git gc.

    Returns:
        Ok(DiffVerdict). ``differs`` is True when there is no previous
        checkpoint, False when there is nothing to capture.
    """
    checkpoints = list_snapshots(path)
    if not checkpoints:
        return ok(DiffVerdict(differs=True))

    # list_snapshots orders by creation time, not by name
    last = checkpoints[0]

    candidate = create_snapshot_object("checkpoint candidate", path=path, when=when)
    if not candidate.ok:
        return candidate
    if candidate.value is None:
        return ok(DiffVerdict(differs=False, last=last))

    changed = diff_snapshots(last.object_id, candidate.value, path)
    if changed is None:
        # Cannot tell; prefer an extra checkpoint over a missed one
        logger.debug("Diff against last checkpoint failed, treating as changed")
        changed = True

    logger.debug(f"Current state {'differs from' if changed else 'matches'} {last.name}")
    return ok(DiffVerdict(differs=changed, last=last))
