"""Team commands — list rosters, dispatch a task to one team member."""

from __future__ import annotations

from typing import Optional

import click

from switchboard.cli.app import async_cmd, load_orchestrator
from switchboard.cli.formatters import build_table, get_console
from switchboard.personas import normalize_key


@click.group("teams")
def teams_group() -> None:
    """Inspect team rosters."""
    pass


@teams_group.command("list")
@click.pass_context
def teams_list(ctx: click.Context) -> None:
    """List teams and their members."""
    orchestrator = load_orchestrator(ctx)
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not orchestrator.teams:
        console.print("No teams defined and no personas loaded.")
        return

    rows = []
    for name, members in orchestrator.teams.items():
        loaded = [m for m in members if normalize_key(m) in orchestrator.personas]
        missing = [m for m in members if normalize_key(m) not in orchestrator.personas]
        marker = "*" if name == orchestrator.dispatcher.active_team else ""
        rows.append([f"{name}{marker}", ", ".join(loaded), ", ".join(missing) or "-"])
    console.print(build_table("Teams", ["Team", "Members", "Missing"], rows))


@click.command("dispatch")
@click.argument("name")
@click.argument("task")
@click.option("--team", "-t", default=None, help="Team to dispatch within (default: first team)")
@click.pass_context
@async_cmd
async def dispatch_cmd(ctx: click.Context, name: str, task: str, team: Optional[str]) -> None:
    """Run TASK on the team member NAME and print its output."""
    from switchboard.status import LiveStatusReporter

    console = get_console(no_color=ctx.obj.get("no_color", False))
    live = LiveStatusReporter(console) if console.is_terminal else None
    orchestrator = load_orchestrator(ctx, reporter=live)
    limit = orchestrator.config.orchestration.output_limit

    if team is not None and not orchestrator.dispatcher.activate(team):
        raise click.ClickException(
            f"Unknown team {team!r}. Available: {', '.join(orchestrator.teams) or '(none)'}"
        )

    if live is not None:
        with live:
            result = await orchestrator.dispatcher.dispatch(name, task)
    else:
        result = await orchestrator.dispatcher.dispatch(name, task)

    click.echo(result.render(limit))
    if result.diagnostic:
        click.echo(result.diagnostic, err=True)
    if result.status != "done":
        ctx.exit(1)
