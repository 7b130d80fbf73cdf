"""
Worker Orchestration — Delegating work to short-lived agent subprocesses.

A primary agent hands tasks to workers: separate invocations of a
command-line agent binary, each running with a persona's instructions and
toolset. Three topologies decide how workers are picked and sequenced:

  Dispatcher — the primary agent picks a named specialist from a team
  Pipeline   — a fixed sequence, each step feeding its output to the next
  Pool       — numbered background workers created and continued on demand

Workers stream JSON events on stdout; the runner turns those into live
status, and session files on disk give each logical worker a memory that
survives between invocations.
"""

from __future__ import annotations

from switchboard.orchestration.models import (
    DispatchResult,
    PipelineDefinition,
    PipelineResult,
    PipelineStep,
    PoolNotification,
    WorkerRequest,
    WorkerRunResult,
    WorkerState,
)

__all__ = [
    "DispatchResult",
    "PipelineDefinition",
    "PipelineResult",
    "PipelineStep",
    "PoolNotification",
    "WorkerRequest",
    "WorkerRunResult",
    "WorkerState",
]
