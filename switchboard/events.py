"""
Events — How workers announce what they are doing.

Typed lifecycle records handed to whoever is watching the topologies (the CLI,
a host agent, tests). Events are Pydantic models delivered synchronously to a
single ``on_event`` callback; a failing callback is logged by the emitter and
never reaches the worker that produced the event.

Each event carries a dotted ``event_type`` derived from its class name
(``PoolWorkerFinishedEvent`` -> ``pool.worker.finished``) so a consumer can
route on a string without importing every class.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Literal

from pydantic import BaseModel

# Splits CamelCase including consecutive capitals (acronyms).
_CAMEL_SPLIT_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z][a-z]*")


class SwitchboardEvent(BaseModel):
    """Base class for all typed events."""

    event_type: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.event_type:
            name = type(self).__name__.removesuffix("Event")
            parts = _CAMEL_SPLIT_RE.findall(name)
            self.event_type = ".".join(p.lower() for p in parts) if parts else name.lower()


EventCallback = Callable[[SwitchboardEvent], Any]


# ---------------------------------------------------------------------------
# Event Definitions
# ---------------------------------------------------------------------------

Topology = Literal["dispatcher", "pipeline", "pool"]


class WorkerStartedEvent(SwitchboardEvent):
    """Emitted when a topology starts a worker run."""

    topology: Topology
    identity: str
    task: str
    resumed: bool = False


class WorkerFinishedEvent(SwitchboardEvent):
    """Emitted when a worker run resolves, whatever the outcome."""

    topology: Topology
    identity: str
    status: str
    exit_code: int
    elapsed_ms: int


class PipelineStepEvent(SwitchboardEvent):
    """Emitted on every pipeline step transition."""

    pipeline: str
    step_index: int
    agent: str
    status: str


class PoolWorkerFinishedEvent(SwitchboardEvent):
    """Follow-up notification for the primary agent when a pool worker ends."""

    worker_id: int
    turn: int
    status: str
    message: str


class CredentialFailureEvent(SwitchboardEvent):
    """Emitted when a failed run looks like a missing or invalid credential."""

    identity: str
    diagnostic: str
