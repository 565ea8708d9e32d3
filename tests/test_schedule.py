"""Tests for git_checkpoints.schedule."""

import stat
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from git_checkpoints.config import CheckpointConfig, set_config_value
from git_checkpoints.errors import NOT_A_REPOSITORY, SCHEDULER_UNAVAILABLE
from git_checkpoints.git import get_toplevel
from git_checkpoints.schedule import (
    ACTIVE,
    MISSING,
    PAUSED,
    CrontabRegistrar,
    NullRegistrar,
    Schedule,
    Scheduler,
    build_cron_line,
    compute_schedule,
    entry_marker,
    get_registrar,
    get_wrapper_path,
)

PYTHON = "/usr/bin/python3"


def _scheduler(repo: Path, registrar) -> Scheduler:
    return Scheduler(repo_path=repo, config=CheckpointConfig.load(repo), registrar=registrar, python=PYTHON)


# =============================================================================
# Schedule expressions
# =============================================================================


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [
        (10, Schedule("* * * * *", runs=6, sleep=10)),
        (30, Schedule("* * * * *", runs=2, sleep=30)),
        (45, Schedule("* * * * *", runs=1, sleep=45)),
        (60, Schedule("*/1 * * * *")),
        (300, Schedule("*/5 * * * *")),
        (3599, Schedule("*/59 * * * *")),
        (3600, Schedule("0 */1 * * *")),
        (7200, Schedule("0 */2 * * *")),
        (86399, Schedule("0 */23 * * *")),
        (86400, Schedule("0 0 * * *")),
        (604800, Schedule("0 0 * * *")),
    ],
)
def test_compute_schedule(seconds, expected):
    assert compute_schedule(seconds) == expected


def test_wrapper_only_below_a_minute():
    assert compute_schedule(20).needs_wrapper
    assert not compute_schedule(45).needs_wrapper
    assert not compute_schedule(120).needs_wrapper


def test_cron_line_quotes_paths():
    line = build_cron_line(Path("/work/my repo"), PYTHON, Schedule("*/5 * * * *"))
    assert line == (
        "*/5 * * * * cd '/work/my repo' && /usr/bin/python3 -m git_checkpoints auto"
        " >/dev/null 2>&1 # git-checkpoints:/work/my repo"
    )


def test_cron_line_escapes_percent():
    line = build_cron_line(Path("/work/100%done"), PYTHON, Schedule("*/5 * * * *"))
    assert line == (
        "*/5 * * * * cd /work/100\\%done && /usr/bin/python3 -m git_checkpoints auto"
        " >/dev/null 2>&1 # git-checkpoints:/work/100\\%done"
    )
    assert line.endswith(entry_marker(Path("/work/100%done")))


# =============================================================================
# Registrars
# =============================================================================


class TestCrontabRegistrar:
    def _fake_crontab(self, initial: str, returncode: int = 0):
        """Patch subprocess.run with a crontab that remembers writes."""
        table = {"content": initial, "returncode": returncode}

        def run(cmd, **kwargs):
            if cmd[1] == "-l":
                return MagicMock(returncode=table["returncode"], stdout=table["content"], stderr="")
            table["content"] = kwargs["input"]
            table["returncode"] = 0
            return MagicMock(returncode=0, stdout="", stderr="")

        return table, patch("git_checkpoints.schedule.subprocess.run", side_effect=run)

    def test_install_keeps_foreign_entries(self):
        table, mock_run = self._fake_crontab("0 3 * * * backup.sh\n")
        with mock_run:
            registrar = CrontabRegistrar("crontab")
            assert registrar.install("# git-checkpoints:/repo", "* * * * * auto # git-checkpoints:/repo")
            assert registrar.has("# git-checkpoints:/repo")

        assert table["content"] == "0 3 * * * backup.sh\n* * * * * auto # git-checkpoints:/repo\n"

    def test_install_replaces_own_entry(self):
        table, mock_run = self._fake_crontab("*/5 * * * * old # git-checkpoints:/repo\n")
        with mock_run:
            CrontabRegistrar().install("# git-checkpoints:/repo", "*/10 * * * * new # git-checkpoints:/repo")
        assert table["content"] == "*/10 * * * * new # git-checkpoints:/repo\n"

    def test_marker_does_not_match_other_repo_prefix(self):
        table, mock_run = self._fake_crontab("* * * * * x # git-checkpoints:/repo-two\n")
        with mock_run:
            assert CrontabRegistrar().remove("# git-checkpoints:/repo") is False
        assert "repo-two" in table["content"]

    def test_empty_crontab(self):
        table, mock_run = self._fake_crontab("", returncode=1)
        with mock_run:
            registrar = CrontabRegistrar()
            assert registrar.read() == []
            assert registrar.remove("# git-checkpoints:/repo") is False

    def test_remove_all(self):
        table, mock_run = self._fake_crontab(
            "0 3 * * * backup.sh\n"
            "* * * * * a # git-checkpoints:/one\n"
            "*/5 * * * * b # git-checkpoints:/two\n"
        )
        with mock_run:
            assert CrontabRegistrar().remove_all() == 2
        assert table["content"] == "0 3 * * * backup.sh\n"

    def test_crontab_missing_at_runtime(self):
        with patch("git_checkpoints.schedule.subprocess.run", side_effect=OSError("gone")):
            registrar = CrontabRegistrar()
            assert registrar.read() == []
            assert registrar.install("# m", "* * * * * x # m") is False


def test_get_registrar(monkeypatch):
    monkeypatch.setattr("git_checkpoints.schedule.shutil.which", lambda name: None)
    assert isinstance(get_registrar(), NullRegistrar)
    monkeypatch.setattr("git_checkpoints.schedule.shutil.which", lambda name: "/usr/bin/crontab")
    assert isinstance(get_registrar(), CrontabRegistrar)


# =============================================================================
# Scheduler
# =============================================================================


class TestScheduler:
    def test_resume_installs_one_entry(self, repo: Path, fake_registrar):
        outcome = _scheduler(repo, fake_registrar).resume().unwrap()

        assert outcome.schedule == Schedule("*/5 * * * *")
        assert outcome.warnings == ()
        [line] = fake_registrar.lines
        assert line.startswith("*/5 * * * * cd ")
        assert "-m git_checkpoints auto" in line
        assert line.endswith(entry_marker(get_toplevel(repo)))
        assert CheckpointConfig.load(repo).paused is False

    def test_resume_twice_replaces_entry(self, repo: Path, fake_registrar):
        _scheduler(repo, fake_registrar).resume()
        set_config_value("interval", "30", repo)
        _scheduler(repo, fake_registrar).resume()

        [line] = fake_registrar.lines
        assert line.startswith("*/30 * * * *")

    def test_resume_from_subdirectory_uses_toplevel(self, repo: Path, fake_registrar):
        sub = repo / "src"
        sub.mkdir()
        _scheduler(sub, fake_registrar).resume()
        assert fake_registrar.has(entry_marker(get_toplevel(repo)))

    def test_status(self, repo: Path, fake_registrar):
        assert _scheduler(repo, fake_registrar).status().unwrap().state == MISSING

        _scheduler(repo, fake_registrar).resume()
        status = _scheduler(repo, fake_registrar).status().unwrap()
        assert status.state == ACTIVE
        assert status.describe() == "Auto-checkpointing: ACTIVE (every 5 minutes)"

        _scheduler(repo, fake_registrar).pause()
        status = _scheduler(repo, fake_registrar).status().unwrap()
        assert status.state == PAUSED
        assert status.describe() == "Auto-checkpointing: PAUSED"

    def test_drift_is_reported(self, repo: Path, fake_registrar):
        _scheduler(repo, fake_registrar).resume()
        fake_registrar.lines.clear()

        status = _scheduler(repo, fake_registrar).status().unwrap()

        assert status.state == MISSING
        assert status.describe() == "Auto-checkpointing: configured but not found (run resume)"

    def test_pause(self, repo: Path, fake_registrar):
        fake_registrar.lines.append("0 3 * * * backup.sh")
        _scheduler(repo, fake_registrar).resume()

        outcome = _scheduler(repo, fake_registrar).pause().unwrap()

        assert outcome.warnings == ()
        assert fake_registrar.lines == ["0 3 * * * backup.sh"]
        assert CheckpointConfig.load(repo).paused is True

    def test_pause_without_registration(self, repo: Path, fake_registrar):
        assert _scheduler(repo, fake_registrar).pause().ok
        assert CheckpointConfig.load(repo).paused is True

    def test_sub_minute_interval_uses_wrapper(self, repo: Path, fake_registrar):
        set_config_value("interval", "10s", repo)

        outcome = _scheduler(repo, fake_registrar).resume().unwrap()

        wrapper = get_wrapper_path(get_toplevel(repo))
        assert outcome.schedule.needs_wrapper
        assert wrapper.exists()
        assert stat.S_IMODE(wrapper.stat().st_mode) == 0o700
        script = wrapper.read_text()
        assert script.startswith("#!/bin/sh\n")
        assert "-lt 6" in script
        assert "sleep 10" in script
        assert f"{PYTHON} -m git_checkpoints auto" in script
        [line] = fake_registrar.lines
        assert line.startswith(f"* * * * * {wrapper}")

    def test_wrapper_removed_when_interval_grows(self, repo: Path, fake_registrar):
        set_config_value("interval", "10s", repo)
        _scheduler(repo, fake_registrar).resume()
        set_config_value("interval", "5", repo)
        _scheduler(repo, fake_registrar).resume()

        assert not get_wrapper_path(get_toplevel(repo)).exists()

    def test_no_crontab_is_a_warning(self, repo: Path):
        outcome = _scheduler(repo, NullRegistrar()).resume().unwrap()

        assert [w.code for w in outcome.warnings] == [SCHEDULER_UNAVAILABLE]
        assert CheckpointConfig.load(repo).paused is False

    def test_outside_repo(self, outside_dir: Path, fake_registrar):
        scheduler = Scheduler(repo_path=outside_dir, registrar=fake_registrar, python=PYTHON)
        assert scheduler.resume().error.code == NOT_A_REPOSITORY
        assert scheduler.pause().error.code == NOT_A_REPOSITORY
        assert scheduler.status().error.code == NOT_A_REPOSITORY
        assert fake_registrar.lines == []

    def test_local_uninstall(self, repo: Path, fake_registrar):
        set_config_value("interval", "10s", repo)
        _scheduler(repo, fake_registrar).resume()

        assert _scheduler(repo, fake_registrar).local_uninstall().unwrap() is True

        assert fake_registrar.lines == []
        assert not get_wrapper_path(get_toplevel(repo)).exists()
        assert CheckpointConfig.load(repo) == CheckpointConfig()

    def test_uninstall_all(self, repo: Path, tmp_path: Path, fake_registrar, git):
        other = tmp_path / "other"
        other.mkdir()
        git(other, "init", "-q")
        set_config_value("interval", "20s", repo)
        _scheduler(repo, fake_registrar).resume()
        _scheduler(other, fake_registrar).resume()
        fake_registrar.lines.append("0 3 * * * backup.sh")

        removed = Scheduler(registrar=fake_registrar).uninstall_all().unwrap()

        assert removed == 2
        assert fake_registrar.lines == ["0 3 * * * backup.sh"]
        assert not get_wrapper_path(get_toplevel(repo)).exists()
