"""
Topology Base — Shared plumbing for the dispatcher, pipeline and pool.

Each topology owns its WorkerState entries outright. This base only knows how
to hand a request to the runner, report snapshots to a StatusReporter and emit
lifecycle events; the state machine belongs to the subclasses.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from switchboard.config import DEFAULT_MODEL
from switchboard.events import (
    EventCallback,
    SwitchboardEvent,
    Topology,
    WorkerFinishedEvent,
    WorkerStartedEvent,
)
from switchboard.orchestration.models import WorkerRequest, WorkerRunResult, WorkerState
from switchboard.orchestration.runners import WorkerRunnerBase
from switchboard.orchestration.sessions import SessionStore

logger = structlog.get_logger(__name__)


class TopologyBase:
    """Common constructor arguments and helpers for all three topologies."""

    topology: Topology

    def __init__(
        self,
        runner: WorkerRunnerBase,
        sessions: SessionStore,
        model: str = DEFAULT_MODEL,
        reporter: Any = None,  # StatusReporter
        on_event: Optional[EventCallback] = None,
        output_limit: int = 8000,
    ):
        self._runner = runner
        self._sessions = sessions
        self._model = model
        self._reporter = reporter
        self._on_event = on_event
        self._output_limit = output_limit

    @property
    def model(self) -> str:
        return self._model

    def snapshot(self) -> list[WorkerState]:
        """Copies of every WorkerState this topology owns, in display order."""
        return [state.model_copy() for state in self._owned_states()]

    def _owned_states(self) -> list[WorkerState]:
        raise NotImplementedError

    def _report(self, _state: Optional[WorkerState] = None) -> None:
        if self._reporter is None:
            return
        try:
            self._reporter.update(self.topology, self.snapshot())
        except Exception:
            logger.debug("topology.report_failed", topology=self.topology, exc_info=True)

    def _emit(self, event: SwitchboardEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.debug("topology.emit_failed", topology=self.topology, exc_info=True)

    async def _run_worker(self, state: WorkerState, request: WorkerRequest) -> WorkerRunResult:
        """Run one request against ``state``, announcing start and finish."""
        self._emit(
            WorkerStartedEvent(
                topology=self.topology,
                identity=request.identity,
                task=request.task,
                resumed=request.resume,
            )
        )
        self._report()
        result = await self._runner.run(request, state=state, on_update=self._report)
        self._emit(
            WorkerFinishedEvent(
                topology=self.topology,
                identity=request.identity,
                status=result.status,
                exit_code=result.exit_code,
                elapsed_ms=result.elapsed_ms,
            )
        )
        return result
