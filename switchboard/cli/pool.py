"""Pool commands — run several background workers and collect their results."""

from __future__ import annotations

import click

from switchboard.cli.app import async_cmd, echo_credential_failure, load_orchestrator
from switchboard.cli.formatters import get_console


@click.group("pool")
def pool_group() -> None:
    """Run numbered background workers."""
    pass


@pool_group.command("run")
@click.argument("tasks", nargs=-1, required=True)
@click.pass_context
@async_cmd
async def pool_run(ctx: click.Context, tasks: tuple[str, ...]) -> None:
    """Start one worker per TASK, wait for all, print each result."""
    from switchboard.status import LiveStatusReporter

    console = get_console(no_color=ctx.obj.get("no_color", False))
    live = LiveStatusReporter(console) if console.is_terminal else None
    notifications = []
    orchestrator = load_orchestrator(
        ctx, reporter=live, notify=notifications.append, on_event=echo_credential_failure
    )
    pool = orchestrator.pool
    limit = orchestrator.config.orchestration.output_limit

    for task in tasks:
        worker_id = pool.create(task)
        click.echo(f"Subagent #{worker_id} spawned and running in background.")

    if live is not None:
        with live:
            await pool.wait_all()
    else:
        await pool.wait_all()

    for notification in sorted(notifications, key=lambda n: n.id):
        click.echo("")
        click.echo(notification.render(limit))

    if any(n.status != "done" for n in notifications) or len(notifications) < len(tasks):
        ctx.exit(1)
