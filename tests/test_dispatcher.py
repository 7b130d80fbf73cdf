"""Tests for switchboard.orchestration.dispatcher — team routing and per-worker exclusivity."""

from __future__ import annotations

import asyncio

import pytest

from conftest import ScriptedRunner, make_persona
from switchboard.events import WorkerFinishedEvent, WorkerStartedEvent
from switchboard.orchestration.dispatcher import Dispatcher, grid_columns

PERSONAS = {p.key: p for p in (make_persona("scout"), make_persona("builder"), make_persona("reviewer"))}
TEAMS = {"frontend": ["scout", "builder"], "review": ["reviewer", "ghost"]}


@pytest.fixture
def dispatcher(runner, sessions, reporter) -> Dispatcher:
    d = Dispatcher(runner, sessions, PERSONAS, TEAMS, model="anthropic/test", reporter=reporter)
    assert d.activate("frontend")
    return d


class TestActivate:
    def test_members_start_idle(self, dispatcher: Dispatcher) -> None:
        snapshot = dispatcher.snapshot()
        assert [s.identity for s in snapshot] == ["scout", "builder"]
        assert all(s.status == "idle" for s in snapshot)
        assert dispatcher.grid_columns == 2

    def test_unknown_team(self, dispatcher: Dispatcher) -> None:
        assert dispatcher.activate("nope") is False
        assert dispatcher.active_team == "frontend"

    def test_missing_member_skipped(self, dispatcher: Dispatcher) -> None:
        assert dispatcher.activate("review")
        assert [p.name for p in dispatcher.members] == ["reviewer"]

    def test_discovers_existing_session(self, runner, sessions) -> None:
        sessions.ensure()
        sessions.path_for("scout").write_text("{}", encoding="utf-8")
        d = Dispatcher(runner, sessions, PERSONAS, TEAMS)
        d.activate("frontend")
        assert d.state("scout").session_file == sessions.path_for("scout")
        assert d.state("builder").session_file is None

    @pytest.mark.parametrize("size,columns", [(0, 1), (1, 1), (3, 3), (4, 2), (5, 3), (9, 3)])
    def test_grid_columns(self, size: int, columns: int) -> None:
        assert grid_columns(size) == columns


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success(self, dispatcher: Dispatcher, runner: ScriptedRunner, sessions) -> None:
        result = await dispatcher.dispatch("Scout", "map the repo")

        assert result.status == "done"
        assert result.exit_code == 0
        assert result.output == "scout: map the repo"
        assert runner.spawn_count == 1
        request = runner.calls[0]
        assert request.model == "anthropic/test"
        assert request.resume is False
        assert request.session_file == sessions.path_for("scout")

        state = dispatcher.state("scout")
        assert state.status == "done"
        assert state.run_count == 1
        assert state.session_file == sessions.path_for("scout")

    @pytest.mark.asyncio
    async def test_second_dispatch_resumes(self, dispatcher: Dispatcher, runner: ScriptedRunner) -> None:
        await dispatcher.dispatch("scout", "first")
        await dispatcher.dispatch("scout", "second")
        assert [c.resume for c in runner.calls] == [False, True]
        assert dispatcher.state("scout").run_count == 2

    @pytest.mark.asyncio
    async def test_unknown_agent(self, dispatcher: Dispatcher, runner: ScriptedRunner) -> None:
        result = await dispatcher.dispatch("reviewer", "look")
        assert result.status == "unknown"
        assert result.exit_code == 1
        assert 'Agent "reviewer" not found' in result.output
        assert "Scout, Builder" in result.output
        assert runner.spawn_count == 0

    @pytest.mark.asyncio
    async def test_busy_does_not_spawn(self, sessions) -> None:
        gate = asyncio.Event()
        runner = ScriptedRunner(gate=gate)
        d = Dispatcher(runner, sessions, PERSONAS, TEAMS)
        d.activate("frontend")

        first = asyncio.create_task(d.dispatch("scout", "long task"))
        await asyncio.sleep(0)
        assert d.state("scout").status == "running"

        busy = await d.dispatch("scout", "another")
        assert busy.status == "busy"
        assert "already running" in busy.output
        assert runner.spawn_count == 1

        gate.set()
        assert (await first).status == "done"
        assert runner.spawn_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_same_name_spawns_once(self, sessions) -> None:
        gate = asyncio.Event()
        runner = ScriptedRunner(gate=gate)
        d = Dispatcher(runner, sessions, PERSONAS, TEAMS)
        d.activate("frontend")

        tasks = [asyncio.create_task(d.dispatch("scout", f"task {i}")) for i in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks)
        assert sorted(r.status for r in results) == ["busy", "busy", "done"]
        assert runner.spawn_count == 1

    @pytest.mark.asyncio
    async def test_different_members_run_concurrently(self, sessions) -> None:
        gate = asyncio.Event()
        runner = ScriptedRunner(gate=gate)
        d = Dispatcher(runner, sessions, PERSONAS, TEAMS)
        d.activate("frontend")

        tasks = [
            asyncio.create_task(d.dispatch("scout", "a")),
            asyncio.create_task(d.dispatch("builder", "b")),
        ]
        await asyncio.sleep(0)
        assert {s.status for s in d.snapshot()} == {"running"}
        gate.set()
        assert [r.status for r in await asyncio.gather(*tasks)] == ["done", "done"]

    @pytest.mark.asyncio
    async def test_failure_keeps_no_session(self, sessions) -> None:
        runner = ScriptedRunner(script=lambda r: ("401 Unauthorized", 1))
        d = Dispatcher(runner, sessions, PERSONAS, TEAMS)
        d.activate("frontend")

        result = await d.dispatch("builder", "build")
        assert result.status == "error"
        assert result.exit_code == 1
        assert d.state("builder").status == "error"
        assert d.state("builder").session_file is None

    @pytest.mark.asyncio
    async def test_reports_and_events(self, runner, sessions, reporter) -> None:
        events = []
        d = Dispatcher(runner, sessions, PERSONAS, TEAMS, reporter=reporter, on_event=events.append)
        d.activate("frontend")
        await d.dispatch("scout", "go")

        statuses = [s[0] for s in reporter.statuses("dispatcher")]
        assert "running" in statuses
        assert statuses[-1] == "done"
        kinds = [type(e) for e in events]
        assert kinds == [WorkerStartedEvent, WorkerFinishedEvent]
        assert events[0].topology == "dispatcher"


class TestSystemPrompt:
    def test_lists_active_members_only(self, dispatcher: Dispatcher) -> None:
        prompt = dispatcher.build_system_prompt()
        assert "## Active Team: frontend" in prompt
        assert "**Dispatch as:** `scout`" in prompt
        assert "**Dispatch as:** `builder`" in prompt
        assert "reviewer" not in prompt
