"""CLI application — Click-based command hierarchy for switchboard.

The main CLI group and global flags. Subcommand modules register
themselves by importing and adding to the group.
"""

from __future__ import annotations

import asyncio
import functools
from pathlib import Path
from typing import Any, Optional

import click


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def load_config(ctx: click.Context):
    """Build a SwitchboardConfig for the project directory given on the command line."""
    from switchboard import SwitchboardError
    from switchboard.config import SwitchboardConfig

    try:
        return SwitchboardConfig(project_dir=ctx.obj.get("project_dir"))
    except SwitchboardError as e:
        raise click.ClickException(str(e)) from e


def echo_credential_failure(event: Any) -> None:
    """Event callback that prints credential diagnostics to stderr."""
    from switchboard.events import CredentialFailureEvent

    if isinstance(event, CredentialFailureEvent):
        click.echo(event.diagnostic, err=True)


def load_orchestrator(
    ctx: click.Context, reporter: Any = None, notify: Any = None, on_event: Any = None
):
    """Build an Orchestrator with definitions loaded and defaults activated."""
    from switchboard.orchestration.orchestrator import Orchestrator

    orchestrator = Orchestrator.from_config(
        load_config(ctx), reporter=reporter, notify=notify, on_event=on_event
    )
    orchestrator.activate_defaults()
    return orchestrator


@click.group()
@click.option(
    "--project-dir",
    "-C",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project directory (default: current directory)",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, project_dir: Optional[Path], verbose: bool, no_color: bool) -> None:
    """Switchboard - delegate work to agent subprocesses."""
    from switchboard.logging_setup import configure_logging

    ctx.ensure_object(dict)
    ctx.obj["project_dir"] = project_dir
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color
    configure_logging(verbose=verbose, colors=not no_color)


# ---------------------------------------------------------------------------
# Register subcommand modules
# ---------------------------------------------------------------------------

def _register_subcommands() -> None:
    """Import and register all subcommand groups/commands."""
    from switchboard.cli.personas import personas_group
    from switchboard.cli.teams import dispatch_cmd, teams_group
    from switchboard.cli.pipelines import pipelines_group
    from switchboard.cli.pool import pool_group
    from switchboard.cli.sessions import sessions_group

    cli.add_command(personas_group)
    cli.add_command(teams_group)
    cli.add_command(dispatch_cmd)
    cli.add_command(pipelines_group)
    cli.add_command(pool_group)
    cli.add_command(sessions_group)


_register_subcommands()
