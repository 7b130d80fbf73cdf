"""
Worker Runners — The Execution Backend.

A runner takes a WorkerRequest, spawns one invocation of the worker binary,
streams its JSON events into a live WorkerState, and resolves with a
WorkerRunResult. Nothing raises past ``run()``: a missing binary, a crash, a
timeout or a cancellation all come back as a result with a status.

  WorkerRunnerBase         — the contract the topologies depend on
  SubprocessWorkerRunner   — asyncio subprocess implementation

Policy knobs (all optional): a semaphore caps how many workers are in flight
across every topology sharing the runner, and a per-run timeout terminates
workers that never finish.
"""

from __future__ import annotations

import asyncio
import codecs
import itertools
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping, Optional

import structlog

from switchboard.events import CredentialFailureEvent, EventCallback, SwitchboardEvent
from switchboard.orchestration.environment import build_worker_env, detect_credential_failure
from switchboard.orchestration.models import WorkerRequest, WorkerRunResult, WorkerState
from switchboard.orchestration.stream import (
    EventStreamDecoder,
    TextDelta,
    ToolStarted,
    TurnEnded,
    WorkerEvent,
    last_nonblank_line,
)

logger = structlog.get_logger(__name__)

UpdateCallback = Callable[[WorkerState], None]

_READ_SIZE = 4096
_TERMINATE_GRACE_SECONDS = 5.0


def build_worker_args(request: WorkerRequest) -> list[str]:
    """Command-line arguments for one invocation (binary name excluded).

    The instruction body travels as a single argv element; no shell is
    involved at any point.
    """
    persona = request.persona
    args = [
        "--mode", "json",
        "-p",
        "--no-extensions",
        "--model", request.model,
        "--tools", persona.tools_spec,
        "--thinking", "off",
    ]
    if persona.instructions:
        args.extend(["--append-system-prompt", persona.instructions])
    args.extend(["--session", str(request.session_file)])
    if request.resume:
        args.append("-c")
    args.append(request.task)
    return args


class WorkerRunnerBase(ABC):
    """Abstract base for worker execution backends."""

    @abstractmethod
    async def run(
        self,
        request: WorkerRequest,
        state: Optional[WorkerState] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> WorkerRunResult:
        """Run one worker to completion, mutating ``state`` as output streams in."""

    async def stop(self, identity: str) -> bool:
        """Terminate the in-flight process for ``identity``, if any."""
        return False

    async def stop_all(self) -> int:
        """Terminate every in-flight process. Returns how many were stopped."""
        return 0


class SubprocessWorkerRunner(WorkerRunnerBase):
    """Run workers as child processes of the orchestrator."""

    def __init__(
        self,
        binary: str = "pi",
        binary_args: Optional[list[str]] = None,
        max_concurrent: int = 4,
        timeout: float = 0.0,
        tick_interval: float = 1.0,
        context_window: int = 0,
        source_env: Optional[Mapping[str, str]] = None,
        on_event: Optional[EventCallback] = None,
    ):
        self._binary = binary
        self._binary_args = list(binary_args or [])
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent))
        self._timeout = timeout
        self._tick_interval = tick_interval
        self._context_window = context_window
        self._source_env = source_env
        self._on_event = on_event
        # run id -> (identity, process); one identity may have several runs in flight
        self._processes: dict[int, tuple[str, asyncio.subprocess.Process]] = {}
        self._run_ids = itertools.count(1)

    @classmethod
    def from_config(cls, config: Any, on_event: Optional[EventCallback] = None) -> "SubprocessWorkerRunner":
        """Build a runner from an OrchestrationConfig."""
        return cls(
            binary=config.worker_binary,
            binary_args=list(config.worker_binary_args),
            max_concurrent=config.max_concurrent_workers,
            timeout=config.worker_timeout,
            tick_interval=config.tick_interval,
            context_window=config.context_window,
            on_event=on_event,
        )

    @property
    def active_identities(self) -> list[str]:
        return [identity for identity, _ in self._processes.values()]

    async def run(
        self,
        request: WorkerRequest,
        state: Optional[WorkerState] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> WorkerRunResult:
        if state is None:
            state = WorkerState(identity=request.identity)
        async with self._semaphore:
            return await self._run(request, state, on_update)

    async def stop(self, identity: str) -> bool:
        """Terminate every in-flight run for ``identity``."""
        run_ids = [rid for rid, (name, _) in self._processes.items() if name == identity]
        for run_id in run_ids:
            await self._stop_run(run_id)
        return bool(run_ids)

    async def stop_all(self) -> int:
        run_ids = list(self._processes)
        for run_id in run_ids:
            await self._stop_run(run_id)
        return len(run_ids)

    async def _stop_run(self, run_id: int) -> None:
        entry = self._processes.get(run_id)
        if entry is None:
            return
        identity, proc = entry
        await self._terminate(proc)
        logger.info("worker.stopped", identity=identity, pid=proc.pid, run_id=run_id)

    # ---- Internal Methods ----

    async def _run(
        self,
        request: WorkerRequest,
        state: WorkerState,
        on_update: Optional[UpdateCallback],
    ) -> WorkerRunResult:
        start = time.monotonic()
        identity = request.identity
        env = build_worker_env(request.model, request.persona.env, self._source_env)
        cmd = [self._binary, *self._binary_args, *build_worker_args(request)]

        def _elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            logger.error("worker.spawn_failed", identity=identity, binary=self._binary, error=str(exc))
            state.last_line = f"Error: {exc}"
            state.elapsed_ms = _elapsed_ms()
            self._notify(on_update, state)
            return WorkerRunResult(
                identity=identity,
                status="failed",
                output=f"Error spawning worker: {exc}",
                exit_code=1,
                elapsed_ms=state.elapsed_ms,
            )

        run_id = next(self._run_ids)
        self._processes[run_id] = (identity, proc)
        logger.info(
            "worker.spawn",
            identity=identity,
            pid=proc.pid,
            resume=request.resume,
            session=str(request.session_file),
            env_keys=sorted(env),
        )

        stderr_chunks: list[str] = []
        ticker = asyncio.create_task(self._tick(state, start, on_update))
        try:
            returncode = await asyncio.wait_for(
                self._communicate(proc, state, stderr_chunks, on_update),
                timeout=self._timeout or None,
            )
        except asyncio.TimeoutError:
            await self._terminate(proc)
            state.elapsed_ms = _elapsed_ms()
            logger.warning("worker.timeout", identity=identity, timeout=self._timeout)
            return WorkerRunResult(
                identity=identity,
                status="timeout",
                output=f"Worker timed out after {self._timeout}s",
                exit_code=1,
                elapsed_ms=state.elapsed_ms,
                stderr="".join(stderr_chunks),
            )
        except asyncio.CancelledError:
            await self._terminate(proc)
            state.elapsed_ms = _elapsed_ms()
            logger.info("worker.cancelled", identity=identity)
            return WorkerRunResult(
                identity=identity,
                status="cancelled",
                exit_code=1,
                elapsed_ms=state.elapsed_ms,
            )
        finally:
            ticker.cancel()
            self._processes.pop(run_id, None)

        state.elapsed_ms = _elapsed_ms()
        state.last_line = last_nonblank_line(state.output)
        self._notify(on_update, state)

        stderr = "".join(stderr_chunks)
        result = WorkerRunResult(
            identity=identity,
            status="completed" if returncode == 0 else "failed",
            output=state.output,
            exit_code=returncode,
            elapsed_ms=state.elapsed_ms,
            stderr=stderr,
        )

        if returncode != 0:
            worker_name = request.persona.name or identity
            result.diagnostic = detect_credential_failure(
                f"{state.output}\n{stderr}", worker_name, env
            )
            if result.diagnostic:
                logger.warning(
                    "worker.credential_failure",
                    identity=identity,
                    diagnostic=result.diagnostic,
                )
                self._emit(CredentialFailureEvent(identity=identity, diagnostic=result.diagnostic))

        logger.info(
            "worker.exit",
            identity=identity,
            exit_code=returncode,
            elapsed_ms=result.elapsed_ms,
            tool_calls=state.tool_count,
        )
        return result

    async def _communicate(
        self,
        proc: asyncio.subprocess.Process,
        state: WorkerState,
        stderr_chunks: list[str],
        on_update: Optional[UpdateCallback],
    ) -> int:
        await asyncio.gather(
            self._pump_stdout(proc.stdout, state, on_update),
            self._pump_stderr(proc.stderr, stderr_chunks),
        )
        return await proc.wait()

    async def _pump_stdout(
        self,
        stream: asyncio.StreamReader,
        state: WorkerState,
        on_update: Optional[UpdateCallback],
    ) -> None:
        utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        decoder = EventStreamDecoder()
        while True:
            chunk = await stream.read(_READ_SIZE)
            if not chunk:
                break
            self._apply(decoder.feed(utf8.decode(chunk)), state, on_update)
        tail = decoder.feed(utf8.decode(b"", final=True))
        self._apply(tail + decoder.flush(), state, on_update)

    @staticmethod
    async def _pump_stderr(stream: asyncio.StreamReader, chunks: list[str]) -> None:
        utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(_READ_SIZE)
            if not chunk:
                break
            chunks.append(utf8.decode(chunk))
        chunks.append(utf8.decode(b"", final=True))

    def _apply(
        self,
        events: list[WorkerEvent],
        state: WorkerState,
        on_update: Optional[UpdateCallback],
    ) -> None:
        if not events:
            return
        for event in events:
            if isinstance(event, TextDelta):
                state.output += event.text
                state.last_line = last_nonblank_line(state.output)
            elif isinstance(event, ToolStarted):
                state.tool_count += 1
            elif isinstance(event, TurnEnded):
                if event.input_tokens is not None and self._context_window > 0:
                    state.context_pct = event.input_tokens / self._context_window * 100
        self._notify(on_update, state)

    async def _tick(
        self,
        state: WorkerState,
        start: float,
        on_update: Optional[UpdateCallback],
    ) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            state.elapsed_ms = int((time.monotonic() - start) * 1000)
            self._notify(on_update, state)

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_GRACE_SECONDS)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.warning("worker.kill", pid=proc.pid)
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()

    @staticmethod
    def _notify(on_update: Optional[UpdateCallback], state: WorkerState) -> None:
        if on_update is None:
            return
        try:
            on_update(state)
        except Exception:
            logger.debug("worker.update_callback_failed", identity=state.identity, exc_info=True)

    def _emit(self, event: SwitchboardEvent) -> None:
        if self._on_event is not None:
            try:
                self._on_event(event)
            except Exception:
                logger.debug("worker.emit_event_failed", exc_info=True)
