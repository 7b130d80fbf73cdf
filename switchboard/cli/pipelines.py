"""Pipeline commands — list definitions, run one to completion."""

from __future__ import annotations

from typing import Optional

import click

from switchboard.cli.app import async_cmd, echo_credential_failure, load_orchestrator
from switchboard.cli.formatters import build_table, get_console


@click.group("pipelines")
def pipelines_group() -> None:
    """Inspect and run pipelines."""
    pass


@pipelines_group.command("list")
@click.pass_context
def pipelines_list(ctx: click.Context) -> None:
    """List pipeline definitions."""
    orchestrator = load_orchestrator(ctx)
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not orchestrator.pipelines:
        console.print(f"No pipelines defined in {orchestrator.config.pipelines_file}")
        return

    rows = [
        [name, definition.flow, definition.description]
        for name, definition in orchestrator.pipelines.items()
    ]
    console.print(build_table("Pipelines", ["Name", "Flow", "Description"], rows))


@pipelines_group.command("run")
@click.argument("task")
@click.option("--name", "-n", default=None, help="Pipeline to run (default: first defined)")
@click.pass_context
@async_cmd
async def pipelines_run(ctx: click.Context, task: str, name: Optional[str]) -> None:
    """Run TASK through a pipeline and print the final step's output."""
    from switchboard.status import LiveStatusReporter

    console = get_console(no_color=ctx.obj.get("no_color", False))
    live = LiveStatusReporter(console) if console.is_terminal else None
    orchestrator = load_orchestrator(ctx, reporter=live, on_event=echo_credential_failure)
    limit = orchestrator.config.orchestration.output_limit

    if name is not None and not orchestrator.pipeline.activate(name):
        raise click.ClickException(
            f"Unknown pipeline {name!r}. Available: {', '.join(orchestrator.pipelines) or '(none)'}"
        )

    if live is not None:
        with live:
            result = await orchestrator.pipeline.run(task)
    else:
        result = await orchestrator.pipeline.run(task)

    click.echo(result.render(limit))
    if not result.success:
        ctx.exit(1)
