"""Result types and error taxonomy for git-checkpoints.

Operations that can fail return ``Result[T, CheckpointError]`` instead of
raising, so callers decide how to surface the failure:

    result = manager.create("before-refactor")
    if not result.ok:
        console.print(format_error(result.error))

Errors are classified by ``code``. Most codes are fatal to the operation;
``REMOTE_OPERATION_FAILED`` and ``SCHEDULER_UNAVAILABLE`` are warnings and
travel inside successful outcomes instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")

# Fatal
NOT_A_REPOSITORY = "NOT_A_REPOSITORY"
DUPLICATE_NAME = "DUPLICATE_NAME"
NO_SUCH_CHECKPOINT = "NO_SUCH_CHECKPOINT"
APPLY_CONFLICT = "APPLY_CONFLICT"
INVALID_NAME = "INVALID_NAME"
INVALID_CONFIG = "INVALID_CONFIG"
LOCK_TIMEOUT = "LOCK_TIMEOUT"
GIT_COMMAND_FAILED = "GIT_COMMAND_FAILED"
WRITE_FAILED = "WRITE_FAILED"

# Declined confirmation
CANCELLED = "CANCELLED"

# Warnings
REMOTE_OPERATION_FAILED = "REMOTE_OPERATION_FAILED"
SCHEDULER_UNAVAILABLE = "SCHEDULER_UNAVAILABLE"

WARNING_CODES = frozenset({REMOTE_OPERATION_FAILED, SCHEDULER_UNAVAILABLE})


@dataclass(frozen=True)
class CheckpointError:
    """A classified failure with optional context for logging."""

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def is_warning(self) -> bool:
        return self.code in WARNING_CODES


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    @property
    def error(self) -> None:
        return None

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self):
        raise ValueError("Called unwrap_err() on Ok result")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed result."""

    error: E

    @property
    def ok(self) -> bool:
        return False

    @property
    def value(self) -> None:
        return None

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self):
        raise ValueError(f"Called unwrap() on Err result: {self.error}")

    def unwrap_err(self) -> E:
        return self.error


Result = Union[Ok[T], Err[E]]


def ok(value: T = None) -> Ok[T]:
    """Wrap a value in Ok."""
    return Ok(value)


def err(error: E) -> Err[E]:
    """Wrap an error in Err."""
    return Err(error)


# =============================================================================
# Constructors
# =============================================================================


def not_a_repository(path: Any = None) -> CheckpointError:
    return CheckpointError(
        code=NOT_A_REPOSITORY,
        message="Not a git repository (or any of the parent directories)",
        context={"path": str(path)} if path is not None else {},
    )


def duplicate_name(name: str) -> CheckpointError:
    return CheckpointError(
        code=DUPLICATE_NAME,
        message=f"Checkpoint '{name}' already exists",
        context={"name": name},
    )


def no_such_checkpoint(name: str) -> CheckpointError:
    return CheckpointError(
        code=NO_SUCH_CHECKPOINT,
        message=f"Checkpoint '{name}' not found",
        context={"name": name},
    )


def apply_conflict(name: str, detail: str = "") -> CheckpointError:
    message = (
        f"Applying checkpoint '{name}' produced conflicts. "
        "Resolve them manually, then stage the result."
    )
    return CheckpointError(
        code=APPLY_CONFLICT,
        message=message,
        context={"name": name, "detail": detail},
    )


def remote_failed(operation: str, remote: str, detail: str = "") -> CheckpointError:
    return CheckpointError(
        code=REMOTE_OPERATION_FAILED,
        message=f"Failed to {operation} on remote '{remote}'",
        context={"remote": remote, "detail": detail},
    )


def git_failed(args: list[str], detail: str = "") -> CheckpointError:
    return CheckpointError(
        code=GIT_COMMAND_FAILED,
        message=f"git {' '.join(args)} failed",
        context={"detail": detail},
    )


def cancelled() -> CheckpointError:
    return CheckpointError(code=CANCELLED, message="Cancelled.")


def scheduler_unavailable(detail: str = "") -> CheckpointError:
    return CheckpointError(
        code=SCHEDULER_UNAVAILABLE,
        message="No crontab available, automatic checkpoints are not scheduled",
        context={"detail": detail},
    )


def format_error(error: CheckpointError) -> str:
    """Render an error for the terminal.

    Includes git's own output when it was captured, since that is usually
    what the user needs to act on.
    """
    text = error.message
    detail = error.context.get("detail")
    if detail:
        text = f"{text}\n{detail.strip()}"
    return text
