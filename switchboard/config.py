# switchboard/config.py
"""
Configuration for Switchboard.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Paths are relative to
the project directory the orchestrator works in, so the same settings work for
any checkout.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings

from switchboard import SwitchboardError

logger = structlog.get_logger(__name__)

_ENV_FILE = Path.cwd() / ".env"

DEFAULT_MODEL = "openrouter/google/gemini-3-flash-preview"


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - A single str         → ["value"]
      - Comma-separated str  → ["a", "b"]
      - JSON array str       → (parsed by pydantic-settings before this runs)
      - An existing list     → passthrough with str coercion
    """
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if "," in stripped:
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return [stripped]
    return []


# Annotated type for list[str] fields that accept bare values, comma-separated,
# and JSON arrays from environment variables.
StrList = Annotated[list[str], BeforeValidator(_coerce_str_list)]


class OrchestrationConfig(BaseSettings):
    """Configuration for worker spawning and the three topologies."""

    worker_binary: str = Field("pi", alias="SWITCHBOARD_WORKER_BINARY")
    worker_binary_args: StrList = Field(
        default_factory=list, alias="SWITCHBOARD_WORKER_BINARY_ARGS"
    )
    model: str = Field(DEFAULT_MODEL, alias="SWITCHBOARD_MODEL")
    context_window: int = Field(0, alias="SWITCHBOARD_CONTEXT_WINDOW")
    max_concurrent_workers: int = Field(4, alias="SWITCHBOARD_MAX_CONCURRENT_WORKERS")
    worker_timeout: float = Field(0.0, alias="SWITCHBOARD_WORKER_TIMEOUT")
    tick_interval: float = Field(1.0, alias="SWITCHBOARD_TICK_INTERVAL")
    output_limit: int = Field(8000, alias="SWITCHBOARD_OUTPUT_LIMIT")
    session_dir: Path = Field(Path(".pi/agent-sessions"), alias="SWITCHBOARD_SESSION_DIR")
    agent_dirs: StrList = Field(
        default_factory=lambda: ["agents", ".claude/agents", ".pi/agents"],
        alias="SWITCHBOARD_AGENT_DIRS",
    )
    teams_file: Path = Field(Path(".pi/agents/teams.yaml"), alias="SWITCHBOARD_TEAMS_FILE")
    pipelines_file: Path = Field(
        Path(".pi/agents/agent-chain.yaml"), alias="SWITCHBOARD_PIPELINES_FILE"
    )
    pool_tools: str = Field("read,bash,grep,find,ls", alias="SWITCHBOARD_POOL_TOOLS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "OrchestrationConfig":
        self.max_concurrent_workers = max(1, int(self.max_concurrent_workers))
        self.worker_timeout = max(0.0, float(self.worker_timeout))
        self.tick_interval = max(0.05, float(self.tick_interval))
        self.output_limit = max(200, int(self.output_limit))
        self.context_window = max(0, int(self.context_window))
        if not self.worker_binary.strip():
            self.worker_binary = "pi"
        if not self.model.strip():
            self.model = DEFAULT_MODEL
        return self


class SwitchboardConfig:
    """
    Master configuration bound to one project directory.

    Every component receives its settings from here. Relative paths in the
    orchestration settings are resolved against ``project_dir``, never
    against whatever the current working directory happens to be later.
    """

    def __init__(
        self,
        project_dir: Optional[Path] = None,
        orchestration: Optional[OrchestrationConfig] = None,
    ):
        self.project_dir = Path(project_dir or Path.cwd()).resolve()
        if not self.project_dir.is_dir():
            raise SwitchboardError(f"Project directory does not exist: {self.project_dir}")
        self.orchestration = orchestration or OrchestrationConfig()
        logger.debug(
            "config.loaded",
            project_dir=str(self.project_dir),
            binary=self.orchestration.worker_binary,
            model=self.orchestration.model,
        )

    def resolve(self, path: Path | str) -> Path:
        p = Path(path).expanduser()
        if p.is_absolute():
            return p
        return (self.project_dir / p).resolve()

    @property
    def session_dir(self) -> Path:
        return self.resolve(self.orchestration.session_dir)

    @property
    def agent_dirs(self) -> list[Path]:
        return [self.resolve(d) for d in self.orchestration.agent_dirs]

    @property
    def teams_file(self) -> Path:
        return self.resolve(self.orchestration.teams_file)

    @property
    def pipelines_file(self) -> Path:
        return self.resolve(self.orchestration.pipelines_file)

    def __repr__(self) -> str:
        return (
            f"SwitchboardConfig(project_dir={self.project_dir}, "
            f"binary={self.orchestration.worker_binary}, "
            f"model={self.orchestration.model})"
        )
