"""
Pipeline — A fixed sequence of personas, each feeding the next.

A pipeline definition is a list of steps. Every step names a persona and a
prompt template; ``$INPUT`` in the template becomes the previous step's output
(the original task for step one) and ``$ORIGINAL`` always becomes the task the
run started with. The first failing step ends the run.

Each persona in a pipeline keeps its own ``chain-<name>.json`` session file,
separate from the dispatcher's, so running the pipeline again within the same
top-level session continues those conversations.
"""

from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog

from switchboard.config import DEFAULT_MODEL
from switchboard.events import EventCallback, PipelineStepEvent
from switchboard.orchestration.base import TopologyBase
from switchboard.orchestration.models import (
    PipelineDefinition,
    PipelineResult,
    WorkerRequest,
    WorkerState,
)
from switchboard.orchestration.runners import WorkerRunnerBase
from switchboard.orchestration.sessions import SessionStore
from switchboard.personas import PersonaDefinition, normalize_key

logger = structlog.get_logger(__name__)

SESSION_PREFIX = "chain-"

_PLACEHOLDER_RE = re.compile(r"\$(INPUT|ORIGINAL)")


def render_prompt(template: str, previous: str, original: str) -> str:
    """Fill ``$INPUT`` and ``$ORIGINAL`` in a single pass.

    Substituted text is never scanned again, so an output that happens to
    contain ``$ORIGINAL`` is passed through untouched.
    """
    values = {"INPUT": previous, "ORIGINAL": original}
    return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], template)


class Pipeline(TopologyBase):
    """Runs the active pipeline definition step by step."""

    topology = "pipeline"

    def __init__(
        self,
        runner: WorkerRunnerBase,
        sessions: SessionStore,
        personas: Mapping[str, PersonaDefinition],
        pipelines: Mapping[str, PipelineDefinition],
        model: str = DEFAULT_MODEL,
        reporter: Any = None,
        on_event: Optional[EventCallback] = None,
        output_limit: int = 8000,
    ):
        super().__init__(runner, sessions, model, reporter, on_event, output_limit)
        self._personas = dict(personas)
        self._pipelines = dict(pipelines)
        self._active: Optional[PipelineDefinition] = None
        self._steps: list[WorkerState] = []
        self._handles: dict[str, Optional[Path]] = {}
        self._running = False

    @property
    def active(self) -> Optional[PipelineDefinition]:
        return self._active

    @property
    def pipelines(self) -> dict[str, PipelineDefinition]:
        return dict(self._pipelines)

    @property
    def is_running(self) -> bool:
        return self._running

    def _owned_states(self) -> list[WorkerState]:
        return list(self._steps)

    def update_definitions(
        self,
        personas: Mapping[str, PersonaDefinition],
        pipelines: Mapping[str, PipelineDefinition],
    ) -> None:
        self._personas = dict(personas)
        self._pipelines = dict(pipelines)
        self._active = None
        self._steps = []
        self._handles.clear()

    def activate(self, name: str) -> bool:
        """Select the active pipeline by name. Returns False when it is not defined."""
        definition = self._pipelines.get(name)
        if definition is None:
            logger.warning("pipeline.unknown", pipeline=name, available=sorted(self._pipelines))
            return False
        self._active = definition
        self._reset_steps(definition)
        for step in definition.steps:
            key = normalize_key(step.agent)
            if key not in self._handles:
                self._handles[key] = self._sessions.existing(key, SESSION_PREFIX)
        logger.info("pipeline.activated", pipeline=name, flow=definition.flow)
        self._report()
        return True

    def _reset_steps(self, definition: PipelineDefinition) -> None:
        self._steps = [
            WorkerState(identity=step.agent, status="pending") for step in definition.steps
        ]

    async def run(
        self,
        task: str,
        *,
        definition: Optional[PipelineDefinition] = None,
    ) -> PipelineResult:
        """Run ``definition`` (default: the active pipeline) on ``task``."""
        definition = definition or self._active
        if definition is None:
            return PipelineResult(output="No pipeline active", success=False)

        if self._running:
            logger.info("pipeline.busy", pipeline=definition.name)
            return PipelineResult(
                pipeline=definition.name,
                output=f'Pipeline "{definition.name}" is already running. Wait for it to finish.',
                success=False,
            )

        self._running = True
        try:
            return await self._run(definition, task)
        finally:
            self._running = False

    async def _run(self, definition: PipelineDefinition, task: str) -> PipelineResult:
        start = time.monotonic()

        def _elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        self._active = definition
        self._reset_steps(definition)
        self._report()

        logger.info("pipeline.started", pipeline=definition.name, steps=len(definition.steps))
        current = task
        for index, step in enumerate(definition.steps):
            number = index + 1
            state = self._steps[index]
            state.status = "running"
            prompt = render_prompt(step.prompt, current, task)
            state.begin_run(prompt)
            self._step_event(definition, index, step.agent, "running")

            key = normalize_key(step.agent)
            persona = self._personas.get(key)
            if persona is None:
                state.status = "error"
                state.last_line = f'Agent "{step.agent}" not found'
                self._step_event(definition, index, step.agent, "error")
                self._report()
                available = ", ".join(sorted(self._personas))
                logger.warning("pipeline.unknown_agent", pipeline=definition.name, step=number, agent=step.agent)
                return PipelineResult(
                    pipeline=definition.name,
                    output=(
                        f'Error at step {number}: Agent "{step.agent}" not found. '
                        f"Available: {available}"
                    ),
                    success=False,
                    elapsed_ms=_elapsed_ms(),
                )

            self._sessions.ensure()
            session_file = self._sessions.path_for(key, SESSION_PREFIX)
            request = WorkerRequest(
                identity=persona.name,
                persona=persona,
                task=prompt,
                session_file=session_file,
                model=self._model,
                resume=self._handles.get(key) is not None,
            )
            result = await self._run_worker(state, request)

            if not result.success:
                state.status = "error"
                self._step_event(definition, index, step.agent, "error")
                self._report()
                logger.warning(
                    "pipeline.step_failed",
                    pipeline=definition.name,
                    step=number,
                    agent=step.agent,
                    exit_code=result.exit_code,
                    status=result.status,
                )
                return PipelineResult(
                    pipeline=definition.name,
                    output=f"Error at step {number} ({step.agent}): {result.output}",
                    success=False,
                    elapsed_ms=_elapsed_ms(),
                )

            self._handles[key] = session_file
            state.status = "done"
            self._step_event(definition, index, step.agent, "done")
            self._report()
            current = result.output

        elapsed = _elapsed_ms()
        logger.info("pipeline.completed", pipeline=definition.name, elapsed_ms=elapsed)
        return PipelineResult(
            pipeline=definition.name,
            output=current,
            success=True,
            elapsed_ms=elapsed,
        )

    def _step_event(self, definition: PipelineDefinition, index: int, agent: str, status: str) -> None:
        self._emit(
            PipelineStepEvent(
                pipeline=definition.name,
                step_index=index,
                agent=agent,
                status=status,
            )
        )

    def build_system_prompt(self) -> str:
        """System prompt for a primary agent that can run the active pipeline."""
        definition = self._active
        if definition is None:
            return ""

        desc = f"\n{definition.description}" if definition.description else ""
        steps = "\n".join(
            f'{i + 1}. **{step.agent}**: "{step.prompt}"' for i, step in enumerate(definition.steps)
        )

        seen: set[str] = set()
        details = []
        for step in definition.steps:
            key = normalize_key(step.agent)
            if key in seen:
                continue
            seen.add(key)
            persona = self._personas.get(key)
            if persona is None:
                details.append(f"### {step.agent}\nAgent not found.")
                continue
            details.append(
                f"### {persona.display_name}\n{persona.description}\n"
                f"**Tools:** {persona.tools_spec}\n**Role:** {persona.instructions}"
            )

        return (
            f'You are an agent with a sequential pipeline called "{definition.name}" '
            f"at your disposal.{desc}\n"
            "You have full access to your own tools AND the run_chain tool to delegate to your team.\n"
            "\n"
            f"## Active Chain: {definition.name}\n"
            f"Flow: {definition.flow}\n"
            "\n"
            f"{steps}\n"
            "\n"
            "## Agent Details\n"
            "\n"
            + "\n\n".join(details)
            + "\n\n"
            "## How run_chain Works\n"
            "- Pass a clear task description to run_chain\n"
            "- Each step's output feeds into the next step as $INPUT\n"
            "- Agents remember previous work within this session\n"
        )
