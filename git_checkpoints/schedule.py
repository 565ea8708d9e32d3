"""Scheduling automatic checkpoints with cron.

Each repository gets at most one crontab entry, tagged with a trailing
marker comment so it can be found and replaced again:

    */5 * * * * cd '/path/to/repo' && '/usr/bin/python3' -m git_checkpoints auto >/dev/null 2>&1 # git-checkpoints:/path/to/repo

Cron has minute granularity. Intervals below a minute run every minute
through a small wrapper script that calls ``auto`` several times with
sleeps in between.

The crontab itself sits behind ``ScheduleRegistrar``; ``NullRegistrar`` is
used when no ``crontab`` binary exists, and turns scheduling into a warning
rather than a failure.
"""

from __future__ import annotations

import hashlib
import logging
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from git_checkpoints.atomic import atomic_write_text
from git_checkpoints.config import (
    CheckpointConfig,
    format_interval,
    get_user_dir,
    remove_repo_config,
    set_paused,
)
from git_checkpoints.errors import (
    CheckpointError,
    Result,
    err,
    not_a_repository,
    ok,
    scheduler_unavailable,
)
from git_checkpoints.git import get_toplevel

logger = logging.getLogger(__name__)

MARKER_PREFIX = "# git-checkpoints:"
CRONTAB_TIMEOUT = 10

# status() states
ACTIVE = "ACTIVE"
PAUSED = "PAUSED"
MISSING = "MISSING"


# =============================================================================
# Schedule expressions
# =============================================================================


@dataclass(frozen=True)
class Schedule:
    """A cron expression, plus the wrapper loop for sub-minute intervals."""

    expression: str
    runs: int = 1  # auto runs per cron tick
    sleep: int = 0  # seconds between runs

    @property
    def needs_wrapper(self) -> bool:
        return self.runs > 1


def compute_schedule(seconds: int) -> Schedule:
    """Coarsest cron expression that can represent ``seconds``.

    Examples:
        30    -> "* * * * *" with 2 runs 30s apart
        300   -> "*/5 * * * *"
        7200  -> "0 */2 * * *"
        86400 -> "0 0 * * *"
    """
    if seconds < 60:
        return Schedule("* * * * *", runs=max(1, 60 // seconds), sleep=seconds)
    if seconds < 3600:
        return Schedule(f"*/{seconds // 60} * * * *")
    if seconds < 86400:
        return Schedule(f"0 */{seconds // 3600} * * *")
    return Schedule("0 0 * * *")


def cron_escape(text: str) -> str:
    """Escape '%', which cron turns into a newline inside the command."""
    return text.replace("%", "\\%")


def entry_marker(repo: Path) -> str:
    return cron_escape(f"{MARKER_PREFIX}{repo}")


def get_wrapper_dir() -> Path:
    return get_user_dir() / "wrappers"


def get_wrapper_path(repo: Path) -> Path:
    digest = hashlib.sha256(str(repo).encode()).hexdigest()[:16]
    return get_wrapper_dir() / f"{digest}.sh"


def build_wrapper_script(repo: Path, python: str, schedule: Schedule) -> str:
    """Shell script running ``auto`` ``schedule.runs`` times within a minute."""
    auto = f"{shlex.quote(python)} -m git_checkpoints auto >/dev/null 2>&1"
    return f"""#!/bin/sh
# git-checkpoints wrapper for {repo}
cd {shlex.quote(str(repo))} || exit 1
i=0
while [ "$i" -lt {schedule.runs} ]; do
    {auto}
    i=$((i + 1))
    if [ "$i" -lt {schedule.runs} ]; then
        sleep {schedule.sleep}
    fi
done
"""


def build_cron_line(repo: Path, python: str, schedule: Schedule, wrapper: Path | None = None) -> str:
    if wrapper is not None:
        command = shlex.quote(str(wrapper))
    else:
        command = f"cd {shlex.quote(str(repo))} && {shlex.quote(python)} -m git_checkpoints auto"
    return f"{schedule.expression} {cron_escape(command)} >/dev/null 2>&1 {entry_marker(repo)}"


# =============================================================================
# Registrars
# =============================================================================


class ScheduleRegistrar(Protocol):
    available: bool

    def has(self, marker: str) -> bool: ...

    def install(self, marker: str, line: str) -> bool: ...

    def remove(self, marker: str) -> bool: ...

    def remove_all(self) -> int: ...


class NullRegistrar:
    """Stand-in when the platform has no crontab."""

    available = False

    def has(self, marker: str) -> bool:
        return False

    def install(self, marker: str, line: str) -> bool:
        return False

    def remove(self, marker: str) -> bool:
        return False

    def remove_all(self) -> int:
        return 0


class CrontabRegistrar:
    """Reads and rewrites the user's crontab via ``crontab -l`` / ``crontab -``."""

    available = True

    def __init__(self, command: str = "crontab"):
        self.command = command

    def _run(self, args: list[str], input: str | None = None) -> subprocess.CompletedProcess | None:
        try:
            return subprocess.run(
                [self.command, *args],  # noqa: S603
                capture_output=True,
                text=True,
                timeout=CRONTAB_TIMEOUT,
                input=input,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"crontab failed: {e}")
            return None

    def read(self) -> list[str]:
        result = self._run(["-l"])
        # "no crontab for user" exits non-zero
        if result is None or result.returncode != 0:
            return []
        return result.stdout.splitlines()

    def write(self, lines: list[str]) -> bool:
        content = "\n".join(lines) + "\n" if lines else ""
        result = self._run(["-"], input=content)
        if result is None:
            return False
        if result.returncode != 0:
            logger.warning(f"crontab rejected the new table: {result.stderr.strip()}")
            return False
        return True

    def has(self, marker: str) -> bool:
        return any(_owned_by(line, marker) for line in self.read())

    def install(self, marker: str, line: str) -> bool:
        lines = [existing for existing in self.read() if not _owned_by(existing, marker)]
        lines.append(line)
        return self.write(lines)

    def remove(self, marker: str) -> bool:
        lines = self.read()
        kept = [line for line in lines if not _owned_by(line, marker)]
        if len(kept) == len(lines):
            return False
        return self.write(kept)

    def remove_all(self) -> int:
        lines = self.read()
        kept = [line for line in lines if MARKER_PREFIX not in line]
        removed = len(lines) - len(kept)
        if removed and not self.write(kept):
            return 0
        return removed


def _owned_by(line: str, marker: str) -> bool:
    return line.rstrip().endswith(marker)


def get_registrar() -> ScheduleRegistrar:
    command = shutil.which("crontab")
    if command is None:
        logger.debug("crontab not found, scheduling disabled")
        return NullRegistrar()
    return CrontabRegistrar(command)


# =============================================================================
# Scheduler
# =============================================================================


@dataclass(frozen=True)
class SchedulerStatus:
    state: str  # ACTIVE, PAUSED or MISSING
    interval: str

    def describe(self) -> str:
        if self.state == ACTIVE:
            return f"Auto-checkpointing: ACTIVE (every {format_interval(self.interval)})"
        if self.state == PAUSED:
            return "Auto-checkpointing: PAUSED"
        return "Auto-checkpointing: configured but not found (run resume)"


@dataclass(frozen=True)
class ScheduleOutcome:
    schedule: Schedule | None = None
    warnings: tuple[CheckpointError, ...] = ()


class Scheduler:
    """Registers the repository's periodic ``auto`` run."""

    def __init__(
        self,
        repo_path: Path | None = None,
        config: CheckpointConfig | None = None,
        registrar: ScheduleRegistrar | None = None,
        python: str | None = None,
    ):
        self.repo_path = repo_path
        self.config = config if config is not None else CheckpointConfig()
        self.registrar = registrar if registrar is not None else get_registrar()
        self.python = python or sys.executable

    def _toplevel(self) -> Result[Path, CheckpointError]:
        top = get_toplevel(self.repo_path)
        if top is None:
            return err(not_a_repository(self.repo_path))
        return ok(top)

    def _remove_wrapper(self, repo: Path) -> None:
        get_wrapper_path(repo).unlink(missing_ok=True)

    def resume(self) -> Result[ScheduleOutcome, CheckpointError]:
        """Replace this repository's cron entry with a fresh one and unpause."""
        top = self._toplevel()
        if not top.ok:
            return top
        repo = top.value

        warnings: list[CheckpointError] = []
        schedule = compute_schedule(self.config.interval_seconds)

        if not self.registrar.available:
            warnings.append(scheduler_unavailable())
        else:
            wrapper = None
            if schedule.needs_wrapper:
                written = atomic_write_text(
                    get_wrapper_path(repo),
                    build_wrapper_script(repo, self.python, schedule),
                    mode=0o700,
                )
                if not written.ok:
                    return written
                wrapper = written.value
            else:
                self._remove_wrapper(repo)

            marker = entry_marker(repo)
            self.registrar.remove(marker)
            line = build_cron_line(repo, self.python, schedule, wrapper)
            if not self.registrar.install(marker, line):
                warnings.append(scheduler_unavailable("crontab could not be updated"))
            else:
                logger.info(f"Scheduled: {line}")

        saved = set_paused(False, repo)
        if not saved.ok:
            return saved
        self.config.paused = False
        return ok(ScheduleOutcome(schedule=schedule, warnings=tuple(warnings)))

    def pause(self) -> Result[ScheduleOutcome, CheckpointError]:
        """Remove this repository's cron entry (if any) and mark it paused."""
        top = self._toplevel()
        if not top.ok:
            return top
        repo = top.value

        warnings: list[CheckpointError] = []
        if not self.registrar.available:
            warnings.append(scheduler_unavailable())
        elif not self.registrar.remove(entry_marker(repo)):
            logger.debug(f"No cron entry to remove for {repo}")
        self._remove_wrapper(repo)

        saved = set_paused(True, repo)
        if not saved.ok:
            return saved
        self.config.paused = True
        return ok(ScheduleOutcome(warnings=tuple(warnings)))

    def status(self) -> Result[SchedulerStatus, CheckpointError]:
        top = self._toplevel()
        if not top.ok:
            return top
        if self.config.paused:
            state = PAUSED
        elif self.registrar.has(entry_marker(top.value)):
            state = ACTIVE
        else:
            state = MISSING
        return ok(SchedulerStatus(state=state, interval=self.config.interval))

    def local_uninstall(self) -> Result[bool, CheckpointError]:
        """Remove this repository's cron entry, wrapper and settings.

        Returns Ok(True) if a cron entry was removed.
        """
        top = self._toplevel()
        if not top.ok:
            return top
        repo = top.value
        removed = self.registrar.remove(entry_marker(repo))
        self._remove_wrapper(repo)
        remove_repo_config(repo)
        return ok(removed)

    def uninstall_all(self) -> Result[int, CheckpointError]:
        """Remove every git-checkpoints cron entry and wrapper script.

        Works outside a repository. Returns the number of cron entries removed.
        """
        removed = self.registrar.remove_all()
        wrapper_dir = get_wrapper_dir()
        if wrapper_dir.is_dir():
            for wrapper in wrapper_dir.glob("*.sh"):
                wrapper.unlink(missing_ok=True)
        return ok(removed)
