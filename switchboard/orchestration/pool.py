"""
Pool — Background workers addressed by number.

The primary agent creates workers on the fly, each with its own task, and
keeps talking while they run. When a worker finishes, its result comes back
as a follow-up notification rather than as the return value of ``create``.
A finished worker can be continued with a new task; it resumes its own
session file, so it remembers the earlier turns.

Ids increase monotonically for the lifetime of a top-level session and are
never reused, even after ``remove`` or ``clear``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import structlog

from switchboard.config import DEFAULT_MODEL
from switchboard.events import EventCallback, PoolWorkerFinishedEvent
from switchboard.orchestration.base import TopologyBase
from switchboard.orchestration.models import (
    PoolCommandResult,
    PoolEntry,
    PoolNotification,
    WorkerRequest,
    WorkerState,
)
from switchboard.orchestration.runners import WorkerRunnerBase
from switchboard.orchestration.sessions import SessionStore
from switchboard.personas import PersonaDefinition

logger = structlog.get_logger(__name__)

POOL_TOOLS = "read,bash,grep,find,ls"

NotifyCallback = Callable[[PoolNotification], Any]


def default_pool_persona(tools: str = POOL_TOOLS) -> PersonaDefinition:
    """The anonymous persona pool workers run as: a fixed toolset, no instructions."""
    return PersonaDefinition(name="", description="", tools_spec=tools, instructions="")


class Pool(TopologyBase):
    """Open-ended set of numbered background workers."""

    topology = "pool"

    def __init__(
        self,
        runner: WorkerRunnerBase,
        sessions: SessionStore,
        model: str = DEFAULT_MODEL,
        persona: Optional[PersonaDefinition] = None,
        notify: Optional[NotifyCallback] = None,
        reporter: Any = None,
        on_event: Optional[EventCallback] = None,
        output_limit: int = 8000,
    ):
        super().__init__(runner, sessions, model, reporter, on_event, output_limit)
        self._persona = persona or default_pool_persona()
        self._notify = notify
        self._workers: dict[int, WorkerState] = {}
        self._tasks: dict[int, asyncio.Task] = {}
        self._next_id = 1

    def _owned_states(self) -> list[WorkerState]:
        return list(self._workers.values())

    def __len__(self) -> int:
        return len(self._workers)

    def state(self, worker_id: int) -> Optional[WorkerState]:
        return self._workers.get(worker_id)

    def create(self, task: str) -> int:
        """Start a new worker on ``task`` in the background and return its id."""
        worker_id = self._next_id
        self._next_id += 1

        state = WorkerState(
            identity=str(worker_id),
            status="running",
            session_file=self._sessions.new_pool_path(worker_id),
        )
        state.begin_run(task)
        self._workers[worker_id] = state
        self._start(worker_id, state, resume=False)
        logger.info("pool.created", id=worker_id, task=task[:80])
        return worker_id

    def continue_worker(self, worker_id: int, task: str) -> PoolCommandResult:
        """Give a finished worker a follow-up task in its existing conversation."""
        state = self._workers.get(worker_id)
        if state is None:
            return PoolCommandResult(ok=False, message=f"Error: No subagent #{worker_id} found.")
        if state.status == "running":
            logger.info("pool.busy", id=worker_id)
            return PoolCommandResult(
                ok=False,
                id=worker_id,
                message=f"Error: Subagent #{worker_id} is still running.",
            )

        state.status = "running"
        state.begin_run(task)
        self._start(worker_id, state, resume=True)
        logger.info("pool.continued", id=worker_id, turn=state.run_count)
        return PoolCommandResult(
            ok=True,
            id=worker_id,
            message=f"Subagent #{worker_id} continuing conversation in background.",
        )

    def remove(self, worker_id: int) -> PoolCommandResult:
        """Forget a worker, terminating its process if it is still running."""
        state = self._workers.pop(worker_id, None)
        if state is None:
            return PoolCommandResult(ok=False, message=f"Error: No subagent #{worker_id} found.")

        task = self._tasks.pop(worker_id, None)
        killed = task is not None and not task.done()
        if killed:
            task.cancel()
        self._report()
        logger.info("pool.removed", id=worker_id, killed=killed)
        suffix = " (killed)" if killed else ""
        return PoolCommandResult(
            ok=True,
            id=worker_id,
            message=f"Subagent #{worker_id} removed{suffix}.",
        )

    def list(self) -> list[PoolEntry]:
        return [
            PoolEntry(id=worker_id, status=state.status, run_count=state.run_count, task=state.task)
            for worker_id, state in self._workers.items()
        ]

    def render_list(self) -> str:
        entries = self.list()
        if not entries:
            return "No active subagents."
        lines = [
            f"#{e.id} [{e.status.upper()}] (Turn {e.run_count}) - {e.task}" for e in entries
        ]
        return "Subagents:\n" + "\n".join(lines)

    def clear(self) -> PoolCommandResult:
        """Remove every worker, terminating the running ones."""
        total = len(self._workers)
        killed = 0
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
                killed += 1
        self._tasks.clear()
        self._workers.clear()
        self._report()
        logger.info("pool.cleared", total=total, killed=killed)

        if total == 0:
            return PoolCommandResult(ok=True, message="No subagents to clear.")
        plural = "s" if total != 1 else ""
        suffix = f" ({killed} killed)" if killed else ""
        return PoolCommandResult(ok=True, message=f"Cleared {total} subagent{plural}{suffix}.")

    def reset(self) -> None:
        """Clear everything and restart numbering, for a new top-level session."""
        self.clear()
        self._next_id = 1

    async def wait(self, worker_id: int) -> Optional[WorkerState]:
        """Wait for the worker's in-flight run (if any) and return its state."""
        task = self._tasks.get(worker_id)
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._workers.get(worker_id)

    async def wait_all(self) -> None:
        pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ---- Internal Methods ----

    def _start(self, worker_id: int, state: WorkerState, resume: bool) -> None:
        request = WorkerRequest(
            identity=str(worker_id),
            persona=self._persona,
            task=state.task,
            session_file=state.session_file,
            model=self._model,
            resume=resume,
        )
        task = asyncio.create_task(
            self._run(worker_id, state, request), name=f"pool-worker-{worker_id}"
        )
        self._tasks[worker_id] = task
        task.add_done_callback(lambda t, wid=worker_id: self._on_task_done(wid, t))

    async def _run(self, worker_id: int, state: WorkerState, request: WorkerRequest) -> None:
        try:
            result = await self._run_worker(state, request)
        except asyncio.CancelledError:
            state.status = "error"
            raise

        if result.status == "cancelled" or self._workers.get(worker_id) is not state:
            # removed while running; nobody is waiting for a notification
            state.status = "error"
            return

        state.status = "done" if result.success else "error"
        self._report()

        notification = PoolNotification(
            id=worker_id,
            turn=state.run_count,
            task=state.task,
            status=state.status,
            elapsed_ms=result.elapsed_ms,
            output=result.output,
        )
        message = notification.render(self._output_limit)
        logger.info(
            "pool.finished",
            id=worker_id,
            turn=state.run_count,
            status=state.status,
            elapsed_ms=result.elapsed_ms,
        )
        self._emit(
            PoolWorkerFinishedEvent(
                worker_id=worker_id,
                turn=state.run_count,
                status=state.status,
                message=message,
            )
        )
        if self._notify is not None:
            try:
                outcome = self._notify(notification)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.error("pool.notify_failed", id=worker_id, exc_info=True)

    def _on_task_done(self, worker_id: int, task: asyncio.Task) -> None:
        if self._tasks.get(worker_id) is task:
            del self._tasks[worker_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("pool.task_failed", id=worker_id, error=str(exc))
            state = self._workers.get(worker_id)
            if state is not None:
                state.status = "error"
                self._report()
