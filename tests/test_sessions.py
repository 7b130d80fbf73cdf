"""Tests for switchboard.orchestration.sessions."""

from __future__ import annotations

from pathlib import Path

from switchboard.orchestration.sessions import SessionStore


def test_path_for_normalizes_name(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    assert store.path_for("Plan Reviewer") == tmp_path / "plan-reviewer.json"
    assert store.path_for("scout", "chain-") == tmp_path / "chain-scout.json"


def test_existing_only_when_on_disk(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "sessions")
    assert store.existing("scout") is None
    store.ensure()
    store.path_for("scout").write_text("{}", encoding="utf-8")
    assert store.existing("scout") == store.path_for("scout")
    assert store.existing("scout", "chain-") is None


def test_new_pool_path(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    path = store.new_pool_path(4)
    assert path.parent == tmp_path / "subagents"
    assert path.parent.is_dir()
    assert path.name.startswith("subagent-4-")
    assert path.suffix == ".jsonl"


def test_wipe(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    store.path_for("scout").write_text("{}", encoding="utf-8")
    store.path_for("scout", "chain-").write_text("{}", encoding="utf-8")
    store.new_pool_path(1).write_text("{}\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("keep", encoding="utf-8")

    assert store.wipe("chain-") == 1
    assert store.existing("scout") is not None
    assert store.wipe() == 2
    assert store.existing("scout") is None
    assert (tmp_path / "notes.txt").exists()


def test_wipe_missing_root(tmp_path: Path) -> None:
    assert SessionStore(tmp_path / "nope").wipe() == 0
