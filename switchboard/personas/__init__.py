"""
Personas — The Roles Workers Are Asked to Play.

A persona is a Markdown file with a frontmatter block and a plain-text
instruction body:

    ---
    name: scout
    description: Fast read-only reconnaissance of the codebase
    tools: read,grep,find,ls
    env: GITHUB_TOKEN
    ---

    You are a scout. Explore quickly and report what you find...

The frontmatter names the persona, lists the tools the worker binary may
expose to it, and declares any extra environment variables it needs beyond the
model provider's credential. The body is handed to the worker binary verbatim
as an appended system prompt, so every file is treated as untrusted input and
validated before it can reach a spawned process (see ``loader``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

# Maximum instruction body length in characters.
MAX_INSTRUCTIONS_LENGTH = 50_000

# Maximum persona name length.
MAX_NAME_LENGTH = 64

DEFAULT_TOOLS = "read,grep,find,ls"

# Tool names the worker binary and the topologies know about.
KNOWN_TOOLS = frozenset(
    {
        "read",
        "write",
        "edit",
        "bash",
        "grep",
        "find",
        "ls",
        "fetch",
        "firecrawl",
        "dispatch_agent",
        "run_chain",
        "query_experts",
        "tilldone",
        "subagent_create",
        "subagent_continue",
        "subagent_remove",
        "subagent_list",
    }
)

Severity = Literal["error", "warning"]


def split_tools(tools: str) -> list[str]:
    """Split a comma-separated tool list, dropping blanks."""
    return [t.strip() for t in tools.split(",") if t.strip()]


def normalize_key(name: str) -> str:
    """Lowercase a persona name and collapse whitespace into dashes."""
    return "-".join(name.lower().split())


@dataclass(frozen=True)
class ValidationFinding:
    """One problem found while loading a persona file."""

    field: str
    message: str
    severity: Severity = "warning"

    @property
    def is_error(self) -> bool:
        return self.severity == "error"


@dataclass(frozen=True)
class PersonaDefinition:
    """
    A validated persona, ready to be assigned to a worker.

    ``tools_spec`` keeps the comma-joined list exactly as written, because
    that string is what the worker binary receives on its command line.
    """

    name: str
    description: str
    tools_spec: str
    instructions: str
    env: tuple[str, ...] = ()
    source_file: Optional[Path] = None
    tools: frozenset[str] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tools", frozenset(split_tools(self.tools_spec)))

    @property
    def key(self) -> str:
        return normalize_key(self.name)

    @property
    def display_name(self) -> str:
        return " ".join(w[:1].upper() + w[1:] for w in self.name.split("-"))


@dataclass
class PersonaLoadResult:
    """Outcome of loading one file: the persona (if accepted) and all findings."""

    persona: Optional[PersonaDefinition]
    findings: list[ValidationFinding] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(f.is_error for f in self.findings)


__all__ = [
    "DEFAULT_TOOLS",
    "KNOWN_TOOLS",
    "MAX_INSTRUCTIONS_LENGTH",
    "MAX_NAME_LENGTH",
    "PersonaDefinition",
    "PersonaLoadResult",
    "ValidationFinding",
    "normalize_key",
    "split_tools",
]
