"""
Orchestration Data Models — The Language of Delegation.

These Pydantic models define the contract between the topologies and the
worker runner. Every delegation, every live status update and every pipeline
definition flows through these structures.

WorkerRequest describes *what* to run. WorkerState is the live, mutable view a
status display reads while it runs. WorkerRunResult describes *what happened*.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from switchboard.personas import PersonaDefinition

WorkerStatus = Literal["idle", "pending", "running", "done", "error"]

TRUNCATION_MARKER = "\n\n... [truncated]"


def truncate_output(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


@dataclass(frozen=True)
class WorkerRequest:
    """One invocation of the worker binary."""

    identity: str
    persona: PersonaDefinition
    task: str
    session_file: Path
    model: str
    resume: bool = False


class WorkerState(BaseModel):
    """Live status of one logical worker, owned by a single topology."""

    identity: str
    description: str = ""
    status: WorkerStatus = "idle"
    task: str = ""
    output: str = ""
    last_line: str = ""
    tool_count: int = 0
    elapsed_ms: int = 0
    context_pct: float = 0.0
    session_file: Optional[Path] = None
    run_count: int = 0

    def begin_run(self, task: str) -> None:
        """Reset per-run counters; the caller sets ``status`` itself."""
        self.task = task
        self.output = ""
        self.last_line = ""
        self.tool_count = 0
        self.elapsed_ms = 0
        self.run_count += 1


class WorkerRunResult(BaseModel):
    """Outcome from a completed (or failed) worker run."""

    identity: str
    status: Literal["completed", "failed", "timeout", "cancelled"] = "completed"
    output: str = ""
    exit_code: int = 0
    elapsed_ms: int = 0
    stderr: str = ""
    diagnostic: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "completed" and self.exit_code == 0


class DispatchResult(BaseModel):
    """What the dispatcher hands back to the primary agent."""

    agent: str
    status: Literal["done", "error", "busy", "unknown"]
    output: str = ""
    exit_code: int = 0
    elapsed_ms: int = 0
    diagnostic: Optional[str] = None

    def summary(self) -> str:
        return f"[{self.agent}] {self.status} in {round(self.elapsed_ms / 1000)}s"

    def render(self, limit: int = 8000) -> str:
        return f"{self.summary()}\n\n{truncate_output(self.output, limit)}"


class PipelineStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent: str
    prompt: str = "$INPUT"

    @field_validator("agent")
    @classmethod
    def _agent_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("step agent must not be empty")
        return value


class PipelineDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    steps: tuple[PipelineStep, ...] = Field(min_length=1)

    @property
    def flow(self) -> str:
        return " -> ".join(step.agent for step in self.steps)


class PipelineResult(BaseModel):
    pipeline: str = ""
    output: str = ""
    success: bool = False
    elapsed_ms: int = 0

    def render(self, limit: int = 8000) -> str:
        status = "done" if self.success else "error"
        summary = f"[pipeline:{self.pipeline}] {status} in {round(self.elapsed_ms / 1000)}s"
        return f"{summary}\n\n{truncate_output(self.output, limit)}"


class PoolEntry(BaseModel):
    """Row of ``Pool.list()``."""

    id: int
    status: WorkerStatus
    run_count: int
    task: str


class PoolCommandResult(BaseModel):
    ok: bool
    message: str
    id: Optional[int] = None


class PoolNotification(BaseModel):
    """Follow-up message delivered to the primary agent when a pool run ends."""

    id: int
    turn: int
    task: str
    status: WorkerStatus
    elapsed_ms: int
    output: str

    def render(self, limit: int = 8000) -> str:
        turn = f" (Turn {self.turn})" if self.turn > 1 else ""
        return (
            f'Subagent #{self.id}{turn} finished "{self.task}" in '
            f"{round(self.elapsed_ms / 1000)}s.\n\nResult:\n"
            f"{truncate_output(self.output, limit)}"
        )
