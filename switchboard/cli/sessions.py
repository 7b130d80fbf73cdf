"""Session commands — manage worker session files on disk."""

from __future__ import annotations

import click

from switchboard.cli.app import load_config


@click.group("sessions")
def sessions_group() -> None:
    """Manage worker session files."""
    pass


@sessions_group.command("reset")
@click.pass_context
def sessions_reset(ctx: click.Context) -> None:
    """Delete every session file so all workers start fresh."""
    from switchboard.orchestration.sessions import SessionStore

    config = load_config(ctx)
    removed = SessionStore(config.session_dir).wipe()
    click.echo(f"Removed {removed} session file(s) from {config.session_dir}")
