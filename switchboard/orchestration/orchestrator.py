"""
Orchestrator — Owns everything one primary agent delegates through.

Personas, teams, pipelines, the session store, the runner and the three
topologies all hang off a single Orchestrator instance. Nothing is module
global, so two orchestrators bound to different project directories never
see each other's state.

Key responsibilities:
  - Load definitions from the project directory
  - Start a fresh top-level session (wipe session files, reset every topology)
  - Shut down cleanly, terminating whatever is still running
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

import structlog

from switchboard.config import SwitchboardConfig
from switchboard.events import EventCallback
from switchboard.orchestration.definitions import load_pipelines, load_teams
from switchboard.orchestration.dispatcher import Dispatcher
from switchboard.orchestration.models import PipelineDefinition
from switchboard.orchestration.pipeline import Pipeline
from switchboard.orchestration.pool import NotifyCallback, Pool, default_pool_persona
from switchboard.orchestration.runners import SubprocessWorkerRunner, WorkerRunnerBase
from switchboard.orchestration.sessions import SessionStore
from switchboard.personas import PersonaDefinition, ValidationFinding
from switchboard.personas.loader import discover_personas

logger = structlog.get_logger(__name__)


class Orchestrator:
    """Holds the definitions and the three topologies for one project."""

    def __init__(
        self,
        config: SwitchboardConfig,
        runner: Optional[WorkerRunnerBase] = None,
        reporter: Any = None,  # StatusReporter
        on_event: Optional[EventCallback] = None,
        notify: Optional[NotifyCallback] = None,
    ):
        self._config = config
        settings = config.orchestration
        self._runner = runner or SubprocessWorkerRunner.from_config(settings, on_event=on_event)
        self._sessions = SessionStore(config.session_dir)

        self.personas: dict[str, PersonaDefinition] = {}
        self.teams: dict[str, list[str]] = {}
        self.pipelines: dict[str, PipelineDefinition] = {}
        self.findings: list[tuple[Path, ValidationFinding]] = []

        common = dict(
            model=settings.model,
            reporter=reporter,
            on_event=on_event,
            output_limit=settings.output_limit,
        )
        self.dispatcher = Dispatcher(self._runner, self._sessions, {}, {}, **common)
        self.pipeline = Pipeline(self._runner, self._sessions, {}, {}, **common)
        self.pool = Pool(
            self._runner,
            self._sessions,
            persona=default_pool_persona(settings.pool_tools),
            notify=notify,
            **common,
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[SwitchboardConfig] = None,
        project_dir: Optional[Path] = None,
        runner: Optional[WorkerRunnerBase] = None,
        reporter: Any = None,
        on_event: Optional[EventCallback] = None,
        notify: Optional[NotifyCallback] = None,
    ) -> "Orchestrator":
        """Build an orchestrator and load its definitions from disk."""
        config = config or SwitchboardConfig(project_dir=project_dir)
        orchestrator = cls(config, runner=runner, reporter=reporter, on_event=on_event, notify=notify)
        orchestrator.load_definitions()
        return orchestrator

    @property
    def config(self) -> SwitchboardConfig:
        return self._config

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def runner(self) -> WorkerRunnerBase:
        return self._runner

    def load_definitions(self) -> None:
        """(Re)load personas, teams and pipelines and hand them to the topologies."""
        findings: list[tuple[Path, ValidationFinding]] = []
        self.personas = discover_personas(
            self._config.agent_dirs,
            on_finding=lambda path, finding: findings.append((path, finding)),
        )
        self.findings = findings
        self.teams = load_teams(
            self._config.teams_file,
            personas=[p.name for p in self.personas.values()],
        )
        self.pipelines = load_pipelines(self._config.pipelines_file)

        self.dispatcher.update_definitions(self.personas, self.teams)
        self.pipeline.update_definitions(self.personas, self.pipelines)
        logger.info(
            "orchestrator.definitions_loaded",
            personas=len(self.personas),
            teams=len(self.teams),
            pipelines=len(self.pipelines),
            findings=len(findings),
        )

    def activate_defaults(self) -> None:
        """Activate the first team and the first pipeline, when there are any."""
        if self.teams:
            self.dispatcher.activate(next(iter(self.teams)))
        if self.pipelines:
            self.pipeline.activate(next(iter(self.pipelines)))

    async def start_session(self) -> int:
        """Begin a fresh top-level session. Returns the number of session files wiped."""
        await self._terminate_running()
        removed = self._sessions.wipe()
        self.load_definitions()
        self.activate_defaults()
        logger.info(
            "orchestrator.session_started",
            team=self.dispatcher.active_team,
            pipeline=self.pipeline.active.name if self.pipeline.active else None,
            wiped=removed,
        )
        return removed

    async def shutdown(self) -> None:
        await self._terminate_running()
        logger.info("orchestrator.shutdown")

    async def _terminate_running(self) -> None:
        self.pool.reset()
        await self._runner.stop_all()

    def status(self) -> Mapping[str, list]:
        """Snapshots of every topology, keyed by topology name."""
        return {
            "dispatcher": self.dispatcher.snapshot(),
            "pipeline": self.pipeline.snapshot(),
            "pool": self.pool.snapshot(),
        }
