"""
Dispatcher — One primary agent delegating to a roster of named specialists.

The primary agent has no tools of its own beyond "dispatch": it picks a
specialist from the active team and hands it a task. Each specialist keeps
one session file for the whole top-level session, so a second dispatch to the
same specialist continues its earlier conversation.

A specialist runs at most once at a time. The check and the switch to
``running`` happen back to back with no ``await`` in between, so two
coroutines dispatching to the same name cannot both get past it.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

import structlog

from switchboard.config import DEFAULT_MODEL
from switchboard.events import EventCallback
from switchboard.orchestration.base import TopologyBase
from switchboard.orchestration.models import DispatchResult, WorkerRequest, WorkerState
from switchboard.orchestration.runners import WorkerRunnerBase
from switchboard.orchestration.sessions import SessionStore
from switchboard.personas import PersonaDefinition, normalize_key

logger = structlog.get_logger(__name__)


def grid_columns(size: int) -> int:
    """Column count for a status grid of ``size`` cards."""
    if size <= 3:
        return max(1, size)
    if size == 4:
        return 2
    return 3


class Dispatcher(TopologyBase):
    """Routes tasks from the primary agent to members of the active team."""

    topology = "dispatcher"

    def __init__(
        self,
        runner: WorkerRunnerBase,
        sessions: SessionStore,
        personas: Mapping[str, PersonaDefinition],
        teams: Mapping[str, list[str]],
        model: str = DEFAULT_MODEL,
        reporter: Any = None,
        on_event: Optional[EventCallback] = None,
        output_limit: int = 8000,
    ):
        super().__init__(runner, sessions, model, reporter, on_event, output_limit)
        self._personas = dict(personas)
        self._teams = {name: list(members) for name, members in teams.items()}
        self._members: dict[str, PersonaDefinition] = {}
        self._workers: dict[str, WorkerState] = {}
        self._active_team: Optional[str] = None
        self.grid_columns = 1

    @property
    def active_team(self) -> Optional[str]:
        return self._active_team

    @property
    def teams(self) -> dict[str, list[str]]:
        return {name: list(members) for name, members in self._teams.items()}

    @property
    def members(self) -> list[PersonaDefinition]:
        return list(self._members.values())

    def state(self, name: str) -> Optional[WorkerState]:
        return self._workers.get(normalize_key(name))

    def _owned_states(self) -> list[WorkerState]:
        return list(self._workers.values())

    def update_definitions(
        self,
        personas: Mapping[str, PersonaDefinition],
        teams: Mapping[str, list[str]],
    ) -> None:
        """Swap in freshly loaded personas and teams; the caller re-activates."""
        self._personas = dict(personas)
        self._teams = {name: list(members) for name, members in teams.items()}
        self._members.clear()
        self._workers.clear()
        self._active_team = None

    def activate(self, team_name: str) -> bool:
        """Make ``team_name`` the active roster. Returns False for an unknown team."""
        try:
            roster = self._teams[team_name]
        except KeyError:
            logger.warning("dispatcher.unknown_team", team=team_name, available=sorted(self._teams))
            return False

        self._members.clear()
        self._workers.clear()
        for member in roster:
            key = normalize_key(member)
            persona = self._personas.get(key)
            if persona is None:
                logger.warning("dispatcher.member_missing", team=team_name, member=member)
                continue
            if key in self._members:
                continue
            self._members[key] = persona
            self._workers[key] = WorkerState(
                identity=persona.name,
                description=persona.description,
                session_file=self._sessions.existing(key),
            )

        self._active_team = team_name
        self.grid_columns = grid_columns(len(self._workers))
        logger.info(
            "dispatcher.team_activated",
            team=team_name,
            members=[p.name for p in self._members.values()],
            resumable=sum(1 for s in self._workers.values() if s.session_file is not None),
        )
        self._report()
        return True

    async def dispatch(self, name: str, task: str) -> DispatchResult:
        """Run ``task`` on the named team member and wait for it to finish."""
        key = normalize_key(name)
        state = self._workers.get(key)
        if state is None:
            available = ", ".join(p.display_name for p in self._members.values())
            logger.info("dispatcher.unknown_agent", agent=name)
            return DispatchResult(
                agent=name,
                status="unknown",
                output=f'Agent "{name}" not found. Available: {available}',
                exit_code=1,
            )

        persona = self._members[key]
        if state.status == "running":
            logger.info("dispatcher.busy", agent=persona.name)
            return DispatchResult(
                agent=persona.display_name,
                status="busy",
                output=f'Agent "{persona.display_name}" is already running. Wait for it to finish.',
                exit_code=1,
            )

        state.status = "running"
        state.begin_run(task)

        resume = state.session_file is not None
        self._sessions.ensure()
        session_file = self._sessions.path_for(key)
        request = WorkerRequest(
            identity=persona.name,
            persona=persona,
            task=task,
            session_file=session_file,
            model=self._model,
            resume=resume,
        )
        logger.info("dispatcher.dispatch", agent=persona.name, run=state.run_count, resume=resume)

        try:
            result = await self._run_worker(state, request)
        except asyncio.CancelledError:
            state.status = "error"
            self._report()
            raise

        state.status = "done" if result.success else "error"
        if result.success:
            state.session_file = session_file
        self._report()

        return DispatchResult(
            agent=persona.display_name,
            status=state.status,
            output=result.output,
            exit_code=result.exit_code,
            elapsed_ms=result.elapsed_ms,
            diagnostic=result.diagnostic,
        )

    def catalog(self) -> str:
        return "\n\n".join(
            f"### {p.display_name}\n"
            f"**Dispatch as:** `{p.name}`\n"
            f"{p.description}\n"
            f"**Tools:** {p.tools_spec}"
            for p in self._members.values()
        )

    def build_system_prompt(self) -> str:
        """System prompt for a primary agent whose only tool is dispatch."""
        members = ", ".join(p.display_name for p in self._members.values())
        return (
            "You are a dispatcher agent. You coordinate specialist agents to accomplish tasks.\n"
            "You do NOT have direct access to the codebase. You MUST delegate all work through\n"
            "agents using the dispatch_agent tool.\n"
            "\n"
            f"## Active Team: {self._active_team or '(none)'}\n"
            f"Members: {members}\n"
            "You can ONLY dispatch to agents listed below.\n"
            "\n"
            "## How to Work\n"
            "- Break the request into clear sub-tasks\n"
            "- Choose the right agent for each sub-task and dispatch it\n"
            "- Review results and dispatch follow-up agents if needed\n"
            "- Summarize the outcome for the user\n"
            "\n"
            "## Agents\n"
            "\n"
            f"{self.catalog()}"
        )
