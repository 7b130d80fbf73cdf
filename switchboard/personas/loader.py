"""
Persona Loader — Discovers, parses and validates persona files.

Every persona body ends up as a command-line argument of a spawned worker, so
nothing from disk is trusted. Each file goes through three checks:

  name          — bounded length, restricted character set (errors)
  tools         — every tool must be on the known allowlist (warnings)
  instructions  — size cap (error) and a scan for shell-injection shaped
                  content such as ``$(...)`` or ``| bash`` (warnings)

A file with any error-severity finding is dropped entirely. Warnings never
block loading; they are reported so an operator can review the file.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import structlog
import yaml

from switchboard.personas import (
    DEFAULT_TOOLS,
    KNOWN_TOOLS,
    MAX_INSTRUCTIONS_LENGTH,
    MAX_NAME_LENGTH,
    PersonaDefinition,
    PersonaLoadResult,
    ValidationFinding,
    split_tools,
)

logger = structlog.get_logger(__name__)

FindingCallback = Callable[[Path, ValidationFinding], None]

# --- frontmatter ---\n body
_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n(.*))?\Z", re.DOTALL)

_VALID_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")

_ENV_SPLIT_RE = re.compile(r"[,\s]+")

# (pattern, reason) pairs checked against every instruction body.
SUSPICIOUS_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\$\(.*\)"), "contains shell command substitution $(...)"),
    (
        re.compile(
            r"(?:^|[^`])`(rm|dd|mkfs|chmod|chown|kill|curl|wget|sh|bash|eval)\s[^`\n]*`",
            re.MULTILINE,
        ),
        "contains backtick expression with shell command",
    ),
    (re.compile(r"\x00"), "contains null byte"),
    (re.compile(r"\\'"), "contains escaped single quote"),
    (re.compile(r";\s*(rm|dd|mkfs|kill|chmod|chown)\s"), "contains chained destructive shell command"),
    (re.compile(r"\|\s*(sh|bash|zsh|dash)\b"), "contains pipe to shell"),
    (re.compile(r">\s*/dev/"), "contains redirect to /dev/"),
    (re.compile(r"\beval\s*\("), "contains eval() call"),
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _field_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def _parse_simple_fields(front: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in front.splitlines():
        idx = line.find(":")
        if idx > 0:
            fields[line[:idx].strip()] = line[idx + 1 :].strip()
    return fields


def parse_frontmatter(raw: str) -> Optional[tuple[dict[str, str], str]]:
    """
    Split a persona file into (fields, body).

    Fields are decoded as YAML. Persona files written for other tools are not
    always valid YAML (an unquoted description containing ``: `` is common),
    so a file whose frontmatter does not decode to a mapping falls back to
    plain ``key: value`` line splitting. Returns None without frontmatter.
    """
    match = _FRONTMATTER_RE.match(raw)
    if not match:
        return None

    front, body = match.group(1), match.group(2) or ""
    try:
        meta = yaml.safe_load(front)
    except yaml.YAMLError:
        meta = None

    if isinstance(meta, dict):
        fields = {str(k).strip(): _field_to_str(v) for k, v in meta.items()}
    else:
        fields = _parse_simple_fields(front)
    return fields, body


def parse_env_names(value: str | Iterable[str] | None) -> tuple[str, ...]:
    """Parse a comma or whitespace separated list of env var names."""
    if not value:
        return ()
    if isinstance(value, str):
        parts = _ENV_SPLIT_RE.split(value)
    else:
        parts = [str(v) for v in value]
    return tuple(p.strip() for p in parts if p.strip())


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_name(name: str) -> list[ValidationFinding]:
    findings: list[ValidationFinding] = []
    if not name:
        findings.append(ValidationFinding("name", "persona name is empty", "error"))
        return findings

    if len(name) > MAX_NAME_LENGTH:
        findings.append(
            ValidationFinding(
                "name",
                f"persona name exceeds {MAX_NAME_LENGTH} characters (got {len(name)})",
                "error",
            )
        )

    if not _VALID_NAME_RE.match(name):
        findings.append(
            ValidationFinding(
                "name",
                f'persona name "{name}" contains invalid characters '
                "(allowed: a-z, 0-9, dash, underscore, dot)",
                "error",
            )
        )
    return findings


def validate_tools(
    tools: str,
    known_tools: frozenset[str] | set[str] = KNOWN_TOOLS,
) -> list[ValidationFinding]:
    """Unknown tools are reported as warnings, never errors."""
    return [
        ValidationFinding(
            "tools",
            f'unknown tool "{tool}": not in the known tools allowlist',
            "warning",
        )
        for tool in split_tools(tools or "")
        if tool not in known_tools
    ]


def validate_instructions(body: str) -> list[ValidationFinding]:
    findings: list[ValidationFinding] = []

    if len(body) > MAX_INSTRUCTIONS_LENGTH:
        findings.append(
            ValidationFinding(
                "instructions",
                f"instructions exceed {MAX_INSTRUCTIONS_LENGTH} characters (got {len(body)})",
                "error",
            )
        )

    for pattern, reason in SUSPICIOUS_PATTERNS:
        if pattern.search(body):
            findings.append(
                ValidationFinding(
                    "instructions",
                    f"suspicious content in instructions: {reason}",
                    "warning",
                )
            )
    return findings


def validate_persona(persona: PersonaDefinition) -> list[ValidationFinding]:
    return [
        *validate_name(persona.name),
        *validate_tools(persona.tools_spec),
        *validate_instructions(persona.instructions),
    ]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_persona_file(path: Path) -> PersonaLoadResult:
    """
    Load and validate a single persona file.

    The persona is None whenever any finding has error severity.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return PersonaLoadResult(
            None, [ValidationFinding("file", f"could not read file: {e}", "error")]
        )

    parsed = parse_frontmatter(raw)
    if parsed is None:
        return PersonaLoadResult(
            None,
            [
                ValidationFinding(
                    "file",
                    "file does not have valid frontmatter (---\\n...\\n---)",
                    "error",
                )
            ],
        )

    fields, body = parsed
    persona = PersonaDefinition(
        name=fields.get("name") or path.stem,
        description=fields.get("description", ""),
        tools_spec=fields.get("tools") or DEFAULT_TOOLS,
        instructions=body.strip(),
        env=parse_env_names(fields.get("env")),
        source_file=path,
    )

    findings = validate_persona(persona)
    if any(f.is_error for f in findings):
        return PersonaLoadResult(None, findings)
    return PersonaLoadResult(persona, findings)


def scan_persona_directory(
    directory: Path,
    on_finding: Optional[FindingCallback] = None,
) -> dict[str, PersonaDefinition]:
    """
    Load every valid persona in a directory, keyed by lowercase name.

    A missing directory is simply empty. Later files whose lowercase name
    collides with an already loaded persona are ignored.
    """
    personas: dict[str, PersonaDefinition] = {}
    if not directory.is_dir():
        return personas

    try:
        files = sorted(directory.glob("*.md"))
    except OSError as e:
        logger.warning("persona_loader.scan_failed", path=str(directory), error=str(e))
        return personas

    for path in files:
        if path.name.startswith(".") or not path.is_file():
            continue

        result = load_persona_file(path)
        for finding in result.findings:
            logger.info(
                "persona_loader.finding",
                file=path.name,
                field=finding.field,
                severity=finding.severity,
                message=finding.message,
            )
            if on_finding is not None:
                on_finding(path, finding)

        if result.persona is None:
            logger.warning("persona_loader.rejected", file=path.name)
            continue

        key = result.persona.key
        if key in personas:
            logger.debug("persona_loader.duplicate", name=key, file=path.name)
            continue
        personas[key] = result.persona
        logger.debug("persona_loader.loaded", name=result.persona.name, file=path.name)

    return personas


def discover_personas(
    directories: Iterable[Path],
    on_finding: Optional[FindingCallback] = None,
) -> dict[str, PersonaDefinition]:
    """Scan several directories in order; the first occurrence of a name wins."""
    merged: dict[str, PersonaDefinition] = {}
    for directory in directories:
        for key, persona in scan_persona_directory(directory, on_finding).items():
            if key not in merged:
                merged[key] = persona
    logger.info("persona_loader.discovered", count=len(merged))
    return merged
