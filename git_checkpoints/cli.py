"""git-checkpoints CLI - ephemeral snapshots of uncommitted work."""

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from git_checkpoints import __version__
from git_checkpoints.checkpoint import (
    CREATED,
    NO_CHANGES,
    CheckpointManager,
    CreateOutcome,
    format_age,
)
from git_checkpoints.config import (
    USER_KEYS,
    CheckpointConfig,
    format_interval,
    get_user_dir,
    set_config_value,
)
from git_checkpoints.errors import (
    CANCELLED,
    INVALID_CONFIG,
    CheckpointError,
    format_error,
    not_a_repository,
)
from git_checkpoints.git import is_git_repo
from git_checkpoints.logging import configure_logging
from git_checkpoints.notify import get_notifier
from git_checkpoints.schedule import ACTIVE, Scheduler

console = Console()


# =============================================================================
# Helpers
# =============================================================================


def _fail(error: CheckpointError):
    if error.code == CANCELLED:
        console.print(error.message)
    else:
        console.print(f"[red]Error: {escape(format_error(error))}[/red]")
    sys.exit(1)


def _warn(warnings) -> None:
    for warning in warnings:
        console.print(f"[yellow]Warning: {escape(format_error(warning))}[/yellow]")


def _repo() -> Path:
    return Path.cwd()


def _require_repo() -> None:
    if not is_git_repo(_repo()):
        _fail(not_a_repository(_repo()))


def _manager(yes: bool = False) -> CheckpointManager:
    repo = _repo()
    config = CheckpointConfig.load(repo)
    return CheckpointManager(
        repo_path=repo,
        config=config,
        confirm=(lambda prompt: True) if yes else click.confirm,
        notifier=get_notifier(config.notify),
    )


def _scheduler() -> Scheduler:
    repo = _repo()
    return Scheduler(repo_path=repo, config=CheckpointConfig.load(repo))


def _report_created(outcome: CreateOutcome) -> None:
    checkpoint = outcome.checkpoint
    console.print(f"[green]✓[/green] Created checkpoint: {checkpoint.name}")
    if outcome.remote:
        console.print(f"  Pushed to {escape(outcome.remote)}")
    if outcome.pruned:
        console.print(f"  Pruned {len(outcome.pruned)} old automatic checkpoint(s)")
    _warn(outcome.warnings)


# =============================================================================
# Commands
# =============================================================================


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="git-checkpoints", message="%(prog)s %(version)s")
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
def main(verbose):
    """git-checkpoints: snapshots of uncommitted work, without touching it.

    Checkpoints are stored as git tags under checkpoint/ and pushed to the
    repository's remote when one exists.
    """
    configure_logging(verbose=verbose, log_dir=get_user_dir() / "logs")


@main.command()
@click.argument("name", required=False)
def create(name):
    """Create a checkpoint of staged, unstaged and untracked changes."""
    result = _manager().create(name)
    if not result.ok:
        _fail(result.error)

    outcome = result.value
    if outcome.status == NO_CHANGES:
        console.print("No changes to save.")
        return
    _report_created(outcome)


@main.command("list")
def list_cmd():
    """List checkpoints, newest first."""
    result = _manager().list()
    if not result.ok:
        _fail(result.error)

    checkpoints = result.value
    if not checkpoints:
        console.print("No checkpoints found.")
        return

    console.print("Available checkpoints:")
    table = Table()
    table.add_column("NAME", no_wrap=True)
    table.add_column("CREATED")
    table.add_column("TYPE")
    for checkpoint in checkpoints:
        table.add_row(checkpoint.name, format_age(checkpoint.created), checkpoint.origin)
    console.print(table)


@main.command()
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def delete(name, yes):
    """Delete a checkpoint, or all of them with '*'."""
    result = _manager(yes).delete(name)
    if not result.ok:
        _fail(result.error)

    outcome = result.value
    if not outcome.deleted:
        console.print("No checkpoints found.")
    for deleted in outcome.deleted:
        console.print(f"[green]✓[/green] Deleted checkpoint: {deleted}")
    _warn(outcome.warnings)


@main.command()
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def load(name, yes):
    """Apply a checkpoint's changes to the working tree."""
    result = _manager(yes).load(name)
    if not result.ok:
        _fail(result.error)
    console.print(f"[green]✓[/green] Applied checkpoint: {result.value.name}")


@main.command()
def auto():
    """Create a checkpoint if anything changed since the last one (used by cron)."""
    result = _manager().auto()
    if not result.ok:
        _fail(result.error)

    outcome = result.value
    if outcome.status == CREATED:
        _report_created(outcome)
    elif outcome.status == NO_CHANGES:
        console.print("No changes detected.")
    elif outcome.last is not None:
        console.print(f"No new changes to checkpoint since {outcome.last.name}.")
    else:
        console.print("No new changes to checkpoint.")


@main.command()
def pause():
    """Stop automatic checkpoints for this repository."""
    result = _scheduler().pause()
    if not result.ok:
        _fail(result.error)
    console.print("[green]✓[/green] Auto-checkpointing paused")
    _warn(result.value.warnings)


@main.command()
def resume():
    """Start (or restart) automatic checkpoints for this repository."""
    scheduler = _scheduler()
    result = scheduler.resume()
    if not result.ok:
        _fail(result.error)
    console.print(f"[green]✓[/green] Auto-checkpointing resumed (every {format_interval(scheduler.config.interval)})")
    _warn(result.value.warnings)


@main.command()
def status():
    """Show whether automatic checkpoints are scheduled."""
    result = _scheduler().status()
    if not result.ok:
        _fail(result.error)
    console.print(result.value.describe())


@main.group()
def config():
    """Show or change settings for this repository."""
    pass


@config.command("get")
@click.argument("key", required=False)
def config_get(key):
    """Show all settings, or one value."""
    _require_repo()
    settings = CheckpointConfig.load(_repo())
    if key is None:
        for line in settings.describe():
            console.print(line)
        return

    if key not in USER_KEYS:
        _fail(
            CheckpointError(
                code=INVALID_CONFIG,
                message=f"Unknown config key: {key} (valid: {', '.join(USER_KEYS)})",
            )
        )
    console.print(settings.get(key))


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key, value):
    """Change a setting (interval, notify, max_auto, auto_age_days)."""
    _require_repo()
    result = set_config_value(key, value, _repo())
    if not result.ok:
        _fail(result.error)
    console.print(f"[green]✓[/green] Set {key} = {escape(result.value)}")

    # A running schedule has to pick up the new interval
    if key == "interval":
        scheduler = _scheduler()
        state = scheduler.status()
        if state.ok and state.value.state == ACTIVE:
            rescheduled = scheduler.resume()
            if rescheduled.ok:
                console.print("  Rescheduled automatic checkpoints")
                _warn(rescheduled.value.warnings)


@main.command("local-uninstall")
def local_uninstall():
    """Remove the schedule and settings for this repository (keeps checkpoints)."""
    result = _scheduler().local_uninstall()
    if not result.ok:
        _fail(result.error)
    console.print("[green]✓[/green] Removed git-checkpoints from this repository")
    console.print("  Existing checkpoints were kept")


@main.command()
def uninstall():
    """Remove every git-checkpoints schedule for this user (keeps checkpoints)."""
    result = Scheduler(repo_path=_repo()).uninstall_all()
    if not result.ok:
        _fail(result.error)
    console.print(f"[green]✓[/green] Removed {result.value} scheduled job(s)")


@main.command("help")
@click.pass_context
def help_cmd(ctx):
    """Show this message."""
    click.echo(ctx.parent.get_help())


@main.command()
def version():
    """Show the version."""
    click.echo(f"git-checkpoints {__version__}")


main.add_command(list_cmd, "ls")
main.add_command(delete, "rm")
main.add_command(load, "apply")


if __name__ == "__main__":
    main()
