"""Persona commands — list loaded personas, report validation findings."""

from __future__ import annotations

import click
from rich.text import Text

from switchboard.cli.app import load_config
from switchboard.cli.formatters import build_table, get_console, severity_style


@click.group("personas")
def personas_group() -> None:
    """Inspect persona definitions."""
    pass


@personas_group.command("list")
@click.pass_context
def personas_list(ctx: click.Context) -> None:
    """List personas that loaded successfully."""
    from switchboard.personas.loader import discover_personas

    config = load_config(ctx)
    console = get_console(no_color=ctx.obj.get("no_color", False))
    personas = discover_personas(config.agent_dirs)
    if not personas:
        dirs = ", ".join(str(d) for d in config.agent_dirs)
        console.print(f"No personas found in {dirs}")
        return

    rows = [
        [p.name, p.tools_spec, ", ".join(p.env) or "-", p.description]
        for p in personas.values()
    ]
    console.print(build_table("Personas", ["Name", "Tools", "Env", "Description"], rows))


@personas_group.command("check")
@click.pass_context
def personas_check(ctx: click.Context) -> None:
    """Validate every persona file and show all findings."""
    from switchboard.personas.loader import discover_personas

    config = load_config(ctx)
    console = get_console(no_color=ctx.obj.get("no_color", False))
    findings = []
    personas = discover_personas(
        config.agent_dirs,
        on_finding=lambda path, finding: findings.append((path, finding)),
    )

    for path, finding in findings:
        console.print(
            Text.assemble(
                (finding.severity, severity_style(finding.severity)),
                f" {path.name} ({finding.field}): {finding.message}",
            )
        )

    errors = sum(1 for _, f in findings if f.is_error)
    console.print(
        f"{len(personas)} persona(s) loaded, {errors} error(s), "
        f"{len(findings) - errors} warning(s)"
    )
    if errors:
        ctx.exit(1)
