"""Retention policy for automatic checkpoints.

Two independent rules, both applied after every successful automatic
checkpoint:

- count: keep at most ``max_auto`` automatic checkpoints (0 disables)
- age: drop automatic checkpoints older than ``auto_age_days`` (0 disables)

Manual checkpoints are never selected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from git_checkpoints.errors import CheckpointError, Result, ok
from git_checkpoints.snapshot import Checkpoint, delete_snapshot, list_snapshots

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PruneReport:
    """What a retention pass removed."""

    deleted: tuple[str, ...] = ()
    warnings: tuple[CheckpointError, ...] = ()


def select_expired(
    checkpoints: list[Checkpoint],
    max_auto: int,
    auto_age_days: int,
    now: datetime,
) -> list[Checkpoint]:
    """Pick the automatic checkpoints that violate either rule.

    Args:
        checkpoints: Checkpoints in any order
        max_auto: Maximum automatic checkpoints to keep, 0 for unlimited
        auto_age_days: Maximum age in days, 0 for unlimited
        now: Reference time for the age rule

    Returns:
        Expired checkpoints, oldest first
    """
    autos = sorted(
        (cp for cp in checkpoints if cp.is_auto),
        key=lambda cp: (cp.created, cp.name),
        reverse=True,
    )

    expired: dict[str, Checkpoint] = {}

    if max_auto > 0 and len(autos) > max_auto:
        for cp in autos[max_auto:]:
            expired[cp.name] = cp

    if auto_age_days > 0:
        cutoff = now - timedelta(days=auto_age_days)
        for cp in autos:
            if cp.created < cutoff:
                expired[cp.name] = cp

    return sorted(expired.values(), key=lambda cp: (cp.created, cp.name))


def prune_auto_checkpoints(
    max_auto: int,
    auto_age_days: int,
    now: datetime,
    path: Path | None = None,
) -> Result[PruneReport, CheckpointError]:
    """Delete expired automatic checkpoints, locally and on the remote.

    Uses the same delete path as an explicit user delete, so remote
    failures come back as warnings.
    """
    expired = select_expired(list_snapshots(path), max_auto, auto_age_days, now)
    if not expired:
        return ok(PruneReport())

    deleted: list[str] = []
    warnings: list[CheckpointError] = []

    for cp in expired:
        result = delete_snapshot(cp.name, path)
        if not result.ok:
            # Already removed by a concurrent run or similar; keep going
            logger.warning(f"Could not prune checkpoint {cp.name}: {result.error.message}")
            warnings.append(result.error)
            continue
        deleted.append(cp.name)
        warnings.extend(result.value)

    if deleted:
        logger.info(f"Pruned {len(deleted)} automatic checkpoint(s): {', '.join(deleted)}")
    return ok(PruneReport(deleted=tuple(deleted), warnings=tuple(warnings)))
