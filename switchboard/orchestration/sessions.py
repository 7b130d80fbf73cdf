"""
Session Store — Where workers keep their conversations between invocations.

The worker binary persists each conversation in a session file. Passing the
same file back on the next invocation (with the continue flag) lets a worker
pick up where it left off. The store hands out one file per logical worker;
the files belong to the topology that asked for them, and the whole directory
is wiped when the orchestrator starts a fresh top-level session.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import structlog

from switchboard.personas import normalize_key

logger = structlog.get_logger(__name__)

SESSION_SUFFIXES = frozenset({".json", ".jsonl"})


class SessionStore:
    """Maps worker identities to session files under one root directory."""

    def __init__(self, root: Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def ensure(self) -> Path:
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    def path_for(self, name: str, prefix: str = "") -> Path:
        return self._root / f"{prefix}{normalize_key(name)}.json"

    def existing(self, name: str, prefix: str = "") -> Optional[Path]:
        """Return the session file for ``name`` only if one is already on disk."""
        path = self.path_for(name, prefix)
        return path if path.is_file() else None

    def new_pool_path(self, worker_id: int) -> Path:
        directory = self._root / "subagents"
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"subagent-{worker_id}-{int(time.time() * 1000)}.jsonl"

    def wipe(self, prefix: Optional[str] = None) -> int:
        """Delete session files, optionally only those starting with ``prefix``."""
        if not self._root.is_dir():
            return 0

        removed = 0
        for path in self._root.rglob("*"):
            if path.suffix not in SESSION_SUFFIXES or not path.is_file():
                continue
            if prefix is not None and not path.name.startswith(prefix):
                continue
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("sessions.unlink_failed", path=str(path), error=str(e))

        logger.info("sessions.wiped", root=str(self._root), removed=removed, prefix=prefix)
        return removed
