"""Atomic file writes.

Scheduler wrapper scripts are executed by cron at any moment, so they are
never written in place: content goes to a temp file in the target
directory, gets its permissions, and is renamed over the target.
"""

import logging
import os
import tempfile
from pathlib import Path

from git_checkpoints.errors import WRITE_FAILED, CheckpointError, Result, err, ok

logger = logging.getLogger(__name__)


def atomic_write_text(
    path: Path,
    content: str,
    mode: int = 0o600,
) -> Result[Path, CheckpointError]:
    """Atomically write text content to a file.

    Creates parent directories (0o700) if they don't exist.

    Args:
        path: Target file path
        content: Text content to write
        mode: File permissions, applied before the rename

    Returns:
        Ok(path) on success, Err(CheckpointError) on failure
    """
    path = Path(path)
    temp_path: str | None = None

    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        # Same directory, so the rename stays on one filesystem
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.stem}_",
            suffix=f"{path.suffix}.tmp",
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)

        logger.debug(f"Atomic write complete: {path}")
        return ok(path)

    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        _cleanup_temp(temp_path)
        return err(
            CheckpointError(
                code=WRITE_FAILED,
                message=f"Failed to write {path}",
                context={"path": str(path), "detail": str(e)},
            )
        )


def _cleanup_temp(temp_path: str | None) -> None:
    if temp_path is None:
        return
    try:
        os.unlink(temp_path)
    except FileNotFoundError:
        pass
