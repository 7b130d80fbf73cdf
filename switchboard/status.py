"""
Status reporting — Live views of what every worker is doing.

Topologies push snapshots of their WorkerState entries to a StatusReporter
whenever something changes (a text delta, a tool call, a once-per-second
tick). A reporter decides how to show them; the orchestration code never
depends on how that looks.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from switchboard.orchestration.models import WorkerState


class StatusReporter(Protocol):
    """Anything that accepts status snapshots from a topology."""

    def update(self, topology: str, snapshot: Sequence[WorkerState]) -> None: ...


_GLYPHS = {
    "idle": Text("○ ", style="dim"),
    "pending": Text("○ ", style="dim"),
    "running": Text("● ", style="cyan"),
    "done": Text("✓ ", style="green"),
    "error": Text("✗ ", style="red"),
}


def format_duration(seconds: float) -> str:
    """Format a duration in human-readable form."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        m = int(seconds // 60)
        s = int(seconds % 60)
        return f"{m}m{s:02d}s"
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    return f"{h}h {m:02d}m"


def status_glyph(status: str) -> Text:
    return _GLYPHS.get(status, Text("? ", style="dim")).copy()


def _context_bar(pct: float, width: int = 5) -> str:
    filled = max(0, min(width, round(pct / 100 * width)))
    return "#" * filled + "-" * (width - filled) + f" {round(pct)}%"


def render_status_table(topology: str, snapshot: Sequence[WorkerState]) -> Table:
    """Build a rich Table with one row per worker."""
    table = Table(title=topology, show_header=True, header_style="bold", expand=False)
    table.add_column("Worker")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Tools", justify="right")
    table.add_column("Context")
    table.add_column("Last output", overflow="ellipsis", no_wrap=True, max_width=60)

    for state in snapshot:
        status = status_glyph(state.status)
        status.append(state.status)
        elapsed = format_duration(state.elapsed_ms / 1000) if state.status != "pending" else ""
        table.add_row(
            state.identity if state.identity else "-",
            status,
            elapsed,
            str(state.tool_count),
            _context_bar(state.context_pct) if state.context_pct else "",
            state.last_line or state.description or state.task,
        )
    return table


class LiveStatusReporter:
    """StatusReporter backed by a rich Live display, one table per topology."""

    def __init__(self, console: Optional[Console] = None, refresh_per_second: float = 4):
        self._console = console or Console()
        self._snapshots: dict[str, list[WorkerState]] = {}
        self._live = Live(
            self._render(),
            console=self._console,
            refresh_per_second=refresh_per_second,
            transient=True,
        )

    def __enter__(self) -> "LiveStatusReporter":
        self._live.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._live.stop()

    def update(self, topology: str, snapshot: Sequence[WorkerState]) -> None:
        self._snapshots[topology] = list(snapshot)
        self._live.update(self._render())

    def _render(self) -> Group:
        tables = [
            render_status_table(topology, snapshot)
            for topology, snapshot in self._snapshots.items()
            if snapshot
        ]
        return Group(*tables)
