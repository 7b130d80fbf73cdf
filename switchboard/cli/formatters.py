"""CLI formatters — console and table formatting."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color, highlight=False)


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(str(v) for v in row))
    return table


def severity_style(severity: str) -> str:
    return "red" if severity == "error" else "yellow"
