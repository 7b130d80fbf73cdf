"""
Shared fixtures for the switchboard test suite.

Provides persona-file helpers, a scripted stand-in for the worker runner and
a fake worker binary so individual test modules can focus on behavior rather
than setup.
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

from switchboard.orchestration.models import WorkerRequest, WorkerRunResult, WorkerState
from switchboard.orchestration.runners import WorkerRunnerBase
from switchboard.orchestration.sessions import SessionStore
from switchboard.personas import PersonaDefinition

FAKE_WORKER = Path(__file__).parent / "fake_worker.py"


# ---------------------------------------------------------------------------
# Persona helpers
# ---------------------------------------------------------------------------


def make_persona(
    name: str,
    description: str = "",
    tools: str = "read,grep,find,ls",
    instructions: str = "You are helpful.",
    env: tuple[str, ...] = (),
) -> PersonaDefinition:
    return PersonaDefinition(
        name=name,
        description=description or f"The {name} persona",
        tools_spec=tools,
        instructions=instructions,
        env=env,
    )


def write_persona(
    directory: Path,
    filename: str,
    name: Optional[str] = None,
    tools: Optional[str] = "read,grep,find,ls",
    body: str = "You are a careful assistant.",
    description: str = "A test persona",
    extra: str = "",
) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    lines = ["---"]
    if name is not None:
        lines.append(f"name: {name}")
    lines.append(f"description: {description}")
    if tools is not None:
        lines.append(f"tools: {tools}")
    if extra:
        lines.append(extra)
    lines.append("---")
    lines.append(body)
    path = directory / filename
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def persona_dir(tmp_path: Path) -> Path:
    return tmp_path / "agents"


@pytest.fixture
def sessions(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "sessions")


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------


Script = Callable[[WorkerRequest], tuple[str, int]]


def echo_script(request: WorkerRequest) -> tuple[str, int]:
    return f"{request.identity}: {request.task}", 0


class ScriptedRunner(WorkerRunnerBase):
    """Runner that never spawns anything; records every request it receives.

    ``gate`` (when set) holds every run until the test releases it, which is
    how tests observe a worker while it is still ``running``.
    """

    def __init__(
        self,
        script: Script = echo_script,
        gate: Optional[asyncio.Event] = None,
    ):
        self.script = script
        self.gate = gate
        self.calls: list[WorkerRequest] = []

    @property
    def spawn_count(self) -> int:
        return len(self.calls)

    async def run(
        self,
        request: WorkerRequest,
        state: Optional[WorkerState] = None,
        on_update=None,
    ) -> WorkerRunResult:
        self.calls.append(request)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            return WorkerRunResult(identity=request.identity, status="cancelled", exit_code=1)

        output, exit_code = self.script(request)
        if state is not None:
            state.output = output
            state.last_line = output.splitlines()[-1] if output else ""
            if on_update is not None:
                on_update(state)
        return WorkerRunResult(
            identity=request.identity,
            status="completed" if exit_code == 0 else "failed",
            output=output,
            exit_code=exit_code,
            elapsed_ms=5,
        )


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def worker_env() -> dict[str, str]:
    """Parent environment handed to the subprocess runner in tests."""
    env = {"PATH": os.environ.get("PATH", ""), "OPENROUTER_API_KEY": "sk-or-test"}
    return env


@pytest.fixture
def fake_worker_args() -> tuple[str, list[str]]:
    """Binary and leading args that make the runner launch tests/fake_worker.py."""
    return sys.executable, [str(FAKE_WORKER)]


class RecordingReporter:
    """StatusReporter that keeps every snapshot it is given."""

    def __init__(self) -> None:
        self.updates: list[tuple[str, list[WorkerState]]] = []

    def update(self, topology: str, snapshot) -> None:
        self.updates.append((topology, list(snapshot)))

    def statuses(self, topology: str) -> list[list[str]]:
        return [[s.status for s in snap] for topo, snap in self.updates if topo == topology]


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()
