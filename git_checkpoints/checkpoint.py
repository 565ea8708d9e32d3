"""Checkpoint lifecycle for git-checkpoints.

``CheckpointManager`` orchestrates create / list / load / delete / auto on
top of the snapshot store. Everything it needs from the outside world is
passed in: the loaded configuration, a confirmation callback for
destructive or tree-mutating actions, a notification sink and a clock.
That keeps the CLI, scheduled runs and tests on the same code path:

    manager = CheckpointManager(
        repo_path=Path.cwd(),
        config=CheckpointConfig.load(),
        confirm=click.confirm,
    )
    result = manager.auto()

Every operation returns ``Result[..., CheckpointError]``. Informational
outcomes (nothing to capture, nothing new since the last checkpoint) are
``Ok`` values; remote failures ride along as warnings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from git_checkpoints.config import CheckpointConfig
from git_checkpoints.differ import differs_from_last
from git_checkpoints.errors import (
    LOCK_TIMEOUT,
    CheckpointError,
    Result,
    cancelled,
    duplicate_name,
    err,
    no_such_checkpoint,
    not_a_repository,
    ok,
)
from git_checkpoints.git import has_changes, is_git_repo
from git_checkpoints.lock import DEFAULT_TIMEOUT, LockTimeout, repository_lock
from git_checkpoints.notify import NotificationSink, NullNotifier
from git_checkpoints.retention import prune_auto_checkpoints
from git_checkpoints.snapshot import (
    Checkpoint,
    apply_snapshot,
    create_snapshot_object,
    delete_snapshot,
    generate_auto_name,
    get_snapshot,
    list_snapshots,
    push_snapshot,
    sanitize_name,
    snapshot_exists,
    tag_snapshot,
    validate_name,
)
from git_checkpoints.types import CheckpointName

logger = logging.getLogger(__name__)

ALL_CHECKPOINTS = "*"

# CreateOutcome.status values
CREATED = "created"
NO_CHANGES = "no_changes"
UNCHANGED = "unchanged"


@dataclass(frozen=True)
class CreateOutcome:
    """Result of create/auto."""

    status: str  # created, no_changes, unchanged
    checkpoint: Checkpoint | None = None
    remote: str | None = None  # Remote the checkpoint was pushed to
    pruned: tuple[str, ...] = ()
    warnings: tuple[CheckpointError, ...] = ()
    last: Checkpoint | None = None  # Compared-against checkpoint (unchanged)

    @property
    def created(self) -> bool:
        return self.status == CREATED


@dataclass(frozen=True)
class DeleteOutcome:
    """Result of delete."""

    deleted: tuple[str, ...] = ()
    warnings: tuple[CheckpointError, ...] = ()


def deny(prompt: str) -> bool:
    """Default confirmation: refuse anything that needs a yes."""
    logger.debug(f"No confirmation available, declining: {prompt}")
    return False


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_age(created: datetime, now: datetime | None = None) -> str:
    """Relative age like '3 minutes ago'."""
    now = now or utcnow()
    delta = now - created
    if delta < timedelta(minutes=1):
        return "just now"
    if delta < timedelta(hours=1):
        minutes = int(delta.total_seconds() // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if delta < timedelta(days=1):
        hours = int(delta.total_seconds() // 3600)
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = delta.days
    return f"{days} day{'s' if days != 1 else ''} ago"


class CheckpointManager:
    """Create, list, load and delete checkpoints for one repository."""

    def __init__(
        self,
        repo_path: Path | None = None,
        config: CheckpointConfig | None = None,
        confirm: Callable[[str], bool] | None = None,
        notifier: NotificationSink | None = None,
        clock: Callable[[], datetime] | None = None,
        lock_timeout: float = DEFAULT_TIMEOUT,
    ):
        self.repo_path = repo_path
        self.config = config if config is not None else CheckpointConfig()
        self.confirm = confirm or deny
        self.notifier = notifier or NullNotifier()
        self.clock = clock or utcnow
        self.lock_timeout = lock_timeout

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_repo(self) -> CheckpointError | None:
        if not is_git_repo(self.repo_path):
            return not_a_repository(self.repo_path)
        return None

    def _locked(self, operation: Callable[..., Result], *args) -> Result:
        """Run an operation while holding the repository lock."""
        try:
            with repository_lock(self.repo_path, timeout=self.lock_timeout):
                return operation(*args)
        except LockTimeout as e:
            return err(
                CheckpointError(
                    code=LOCK_TIMEOUT,
                    message="Another git-checkpoints process is busy with this repository",
                    context={"detail": str(e)},
                )
            )

    def _resolve_name(self, name: str | None, now: datetime) -> Result[CheckpointName, CheckpointError]:
        if not name:
            return ok(generate_auto_name(now))
        return validate_name(sanitize_name(name), self.repo_path)

    def _notify_created(self, checkpoint: Checkpoint, remote: str | None, push_error: CheckpointError | None):
        if not self.config.notify:
            return
        if push_error is not None:
            message = f"{checkpoint.name} saved locally (push to {push_error.context.get('remote')} failed)"
        elif remote is not None:
            message = f"{checkpoint.name} saved and pushed to {remote}"
        else:
            message = f"{checkpoint.name} saved"
        self.notifier.send("Checkpoint created", message)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def create(self, name: str | None = None) -> Result[CreateOutcome, CheckpointError]:
        """Snapshot the current dirty state under ``name`` (or an auto name)."""
        if error := self._require_repo():
            return err(error)
        if not has_changes(self.repo_path):
            return ok(CreateOutcome(status=NO_CHANGES))
        return self._locked(self._create, name)

    def _create(self, name: str | None) -> Result[CreateOutcome, CheckpointError]:
        now = self.clock()
        resolved = self._resolve_name(name, now)
        if not resolved.ok:
            return resolved
        checkpoint_name = resolved.value

        if snapshot_exists(checkpoint_name, self.repo_path):
            return err(duplicate_name(checkpoint_name))

        snapshot = create_snapshot_object(f"checkpoint: {checkpoint_name}", path=self.repo_path, when=now)
        if not snapshot.ok:
            return snapshot
        if snapshot.value is None:
            # Changes disappeared between the dirty check and the build
            return ok(CreateOutcome(status=NO_CHANGES))

        tagged = tag_snapshot(checkpoint_name, snapshot.value, self.repo_path)
        if not tagged.ok:
            return tagged
        checkpoint = tagged.value

        warnings: list[CheckpointError] = []
        pushed = push_snapshot(checkpoint.name, self.repo_path)
        remote = pushed.value if pushed.ok else None
        if not pushed.ok:
            warnings.append(pushed.error)
        self._notify_created(checkpoint, remote, pushed.error)

        pruned: tuple[str, ...] = ()
        if checkpoint.is_auto:
            report = prune_auto_checkpoints(
                self.config.max_auto,
                self.config.auto_age_days,
                now,
                self.repo_path,
            )
            if report.ok:
                pruned = report.value.deleted
                warnings.extend(report.value.warnings)

        return ok(
            CreateOutcome(
                status=CREATED,
                checkpoint=checkpoint,
                remote=remote,
                pruned=pruned,
                warnings=tuple(warnings),
            )
        )

    def list(self) -> Result[list[Checkpoint], CheckpointError]:
        """All checkpoints, newest first."""
        if error := self._require_repo():
            return err(error)
        return ok(list_snapshots(self.repo_path))

    def load(self, name: str) -> Result[Checkpoint, CheckpointError]:
        """Apply a checkpoint's changes to the working tree after confirmation."""
        if error := self._require_repo():
            return err(error)

        checkpoint_name = sanitize_name(name)
        checkpoint = get_snapshot(checkpoint_name, self.repo_path)
        if checkpoint is None:
            return err(no_such_checkpoint(checkpoint_name))

        if not self.confirm(f"Apply checkpoint '{checkpoint_name}' to your working tree?"):
            return err(cancelled())

        return apply_snapshot(checkpoint_name, self.repo_path)

    def delete(self, name: str) -> Result[DeleteOutcome, CheckpointError]:
        """Delete one checkpoint, or every checkpoint with ``*``."""
        if error := self._require_repo():
            return err(error)

        if name == ALL_CHECKPOINTS:
            checkpoints = list_snapshots(self.repo_path)
            if not checkpoints:
                return ok(DeleteOutcome())
            if not self.confirm(f"Delete all {len(checkpoints)} checkpoints?"):
                return err(cancelled())
            return self._locked(self._delete, [cp.name for cp in checkpoints], True)

        return self._locked(self._delete, [sanitize_name(name)], False)

    def _delete(self, names: list[str], bulk: bool) -> Result[DeleteOutcome, CheckpointError]:
        deleted: list[str] = []
        warnings: list[CheckpointError] = []
        for name in names:
            result = delete_snapshot(name, self.repo_path)
            if not result.ok:
                # An explicit name must fail loudly; in a bulk delete a
                # vanished checkpoint is not worth aborting for
                if not bulk:
                    return result
                warnings.append(result.error)
                continue
            deleted.append(name)
            warnings.extend(result.value)
        return ok(DeleteOutcome(deleted=tuple(deleted), warnings=tuple(warnings)))

    def auto(self) -> Result[CreateOutcome, CheckpointError]:
        """Create an automatic checkpoint if anything changed since the last one."""
        if error := self._require_repo():
            return err(error)
        if not has_changes(self.repo_path):
            return ok(CreateOutcome(status=NO_CHANGES))
        return self._locked(self._auto)

    def _auto(self) -> Result[CreateOutcome, CheckpointError]:
        verdict = differs_from_last(self.repo_path, when=self.clock())
        if not verdict.ok:
            return verdict
        if not verdict.value.differs:
            return ok(CreateOutcome(status=UNCHANGED, last=verdict.value.last))
        return self._create(None)
