"""Command-line entry point for Smelter."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import typer

from . import __version__
from . import log as smelter_log
from .commands.config import show as config_show_cmd
from .commands.escalate import ack as escalate_ack_cmd
from .commands.escalate import close as escalate_close_cmd
from .commands.escalate import stale as escalate_stale_cmd
from .commands.reclaim import DEFAULT_OLDER_THAN
from .commands.reclaim import reclaim as reclaim_cmd
from .commands.run import once as once_cmd
from .commands.run import run as run_cmd

app = typer.Typer(
    help="Merge queue engine for Beads-tracked rigs.",
    no_args_is_help=True,
    add_completion=False,
)
config_app = typer.Typer(help="Inspect merge queue configuration.", no_args_is_help=True)
escalate_app = typer.Typer(help="Manage escalations.", no_args_is_help=True)
app.add_typer(config_app, name="config")
app.add_typer(escalate_app, name="escalate")


def _validate_log_level(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in smelter_log.LEVEL_NAMES:
        raise typer.BadParameter(f"expected one of: {', '.join(smelter_log.LEVEL_NAMES)}")
    return normalized


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"smelter {__version__}")
        raise typer.Exit()


def _args(ctx: typer.Context, **values: object) -> SimpleNamespace:
    rig = ctx.obj.get("rig") if isinstance(ctx.obj, dict) else None
    return SimpleNamespace(rig=rig, **values)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        callback=_validate_log_level,
        help="Log level: trace, debug, info, success, warning or error.",
    ),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output."),
    rig: Path | None = typer.Option(
        None,
        "--rig",
        envvar="SMELTER_RIG",
        help="Rig directory (defaults to the current directory).",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Configure logging and the target rig for every command."""
    if log_level:
        smelter_log.set_level(log_level)
    if no_color:
        smelter_log.set_no_color(True)
    ctx.obj = {"rig": rig}


@app.command("run")
def run_command(
    ctx: typer.Context,
    test_timeout: float | None = typer.Option(
        None, "--test-timeout", help="Seconds before a test attempt is killed."
    ),
) -> None:
    """Poll the merge queue until interrupted."""
    run_cmd(_args(ctx, test_timeout=test_timeout))


@app.command("once")
def once_command(
    ctx: typer.Context,
    test_timeout: float | None = typer.Option(
        None, "--test-timeout", help="Seconds before a test attempt is killed."
    ),
) -> None:
    """Process a single cycle and exit."""
    once_cmd(_args(ctx, test_timeout=test_timeout))


@app.command("reclaim")
def reclaim_command(
    ctx: typer.Context,
    older_than: str = typer.Option(
        DEFAULT_OLDER_THAN, "--older-than", help="Minimum idle time, e.g. 2h or 90m."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report without reopening."),
) -> None:
    """Reopen merge requests stuck in progress after an engine crash."""
    reclaim_cmd(_args(ctx, older_than=older_than, dry_run=dry_run))


@config_app.command("show")
def config_show_command(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", help="Output format: table or json."),
) -> None:
    """Show the effective merge_queue settings."""
    config_show_cmd(_args(ctx, format=format))


@escalate_app.command("stale")
def escalate_stale_command(ctx: typer.Context) -> None:
    """Re-escalate unacknowledged escalations past the stale threshold."""
    escalate_stale_cmd(_args(ctx))


@escalate_app.command("ack")
def escalate_ack_command(
    ctx: typer.Context,
    escalation_id: str = typer.Argument(..., help="Escalation bead id."),
) -> None:
    """Acknowledge an escalation."""
    escalate_ack_cmd(_args(ctx, escalation_id=escalation_id))


@escalate_app.command("close")
def escalate_close_command(
    ctx: typer.Context,
    escalation_id: str = typer.Argument(..., help="Escalation bead id."),
    reason: str = typer.Option("resolved", "--reason", help="Close reason."),
) -> None:
    """Close an escalation."""
    escalate_close_cmd(_args(ctx, escalation_id=escalation_id, reason=reason))


if __name__ == "__main__":
    app()
