"""
Worker Environment — Credential Minimization for Spawned Processes.

A worker never inherits the orchestrator's full environment. It receives:

  1. A fixed set of system essentials (PATH, HOME, ...) when present
  2. Exactly one API credential: the one belonging to the model's provider
  3. Any extra variables its persona explicitly declares via ``env:``

Everything here is a pure function of its arguments. After a failed run the
combined output can be scanned for credential-failure signatures, producing a
diagnostic that says exactly which variables the worker was given and how to
declare more.
"""

from __future__ import annotations

import os
import re
from typing import Iterable, Mapping, Optional

from switchboard.personas.loader import parse_env_names

# Provider prefix of the model identifier -> credential variable.
PROVIDER_KEY_MAP: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "google": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

ALL_API_KEYS = frozenset(PROVIDER_KEY_MAP.values())

SYSTEM_VARS: tuple[str, ...] = ("PATH", "HOME", "TERM", "LANG", "SHELL", "USER", "TMPDIR")

CREDENTIAL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b401\b"),
    re.compile(r"\b403\b"),
    re.compile(r"unauthorized", re.IGNORECASE),
    re.compile(r"authentication failed", re.IGNORECASE),
    re.compile(r"api[_ -]?key[_ -]?(not|missing|invalid|required)", re.IGNORECASE),
    re.compile(r"no api key", re.IGNORECASE),
    re.compile(r"access denied", re.IGNORECASE),
    re.compile(r"permission denied", re.IGNORECASE),
    re.compile(r"EACCES"),
    re.compile(r"token[_ -]?(expired|invalid|missing|required)", re.IGNORECASE),
    re.compile(r"credentials?[_ -]?(not|missing|invalid|required)", re.IGNORECASE),
)


def extract_provider(model: str) -> Optional[str]:
    """
    Return the provider prefix of a model identifier.

      "anthropic/claude-sonnet-4"              -> "anthropic"
      "openrouter/google/gemini-3-flash"       -> "openrouter"
      "gpt-4o"                                 -> None
    """
    if not model:
        return None
    provider, sep, _ = model.partition("/")
    if not sep or not provider:
        return None
    return provider.lower()


def provider_key_name(provider: Optional[str]) -> Optional[str]:
    if not provider:
        return None
    return PROVIDER_KEY_MAP.get(provider)


def build_worker_env(
    model: str,
    extra_vars: str | Iterable[str] | None = None,
    source_env: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Build the minimal environment for one worker invocation."""
    parent = dict(os.environ) if source_env is None else source_env
    env: dict[str, str] = {}

    for key in SYSTEM_VARS:
        if parent.get(key):
            env[key] = parent[key]

    key_name = provider_key_name(extract_provider(model))
    if key_name and parent.get(key_name):
        env[key_name] = parent[key_name]

    for name in parse_env_names(extra_vars):
        if parent.get(name):
            env[name] = parent[name]

    return env


def describe_env(env: Mapping[str, str]) -> list[str]:
    """Names of the non-system variables a worker was given."""
    return [k for k in env if k not in SYSTEM_VARS]


def detect_credential_failure(
    output: str,
    worker_name: str,
    env: Mapping[str, str],
) -> Optional[str]:
    """
    Scan a failed worker's output for credential-related failures.

    Returns an operator-facing diagnostic, or None when the output does not
    look like a credential problem.
    """
    if not output:
        return None
    if not any(p.search(output) for p in CREDENTIAL_PATTERNS):
        return None

    passed = describe_env(env)
    passed_list = ", ".join(f"`{k}`" for k in passed) if passed else "no API keys"
    verb = "was" if len(passed) == 1 else "were"

    return (
        f'Worker "{worker_name}" failed with what looks like a missing credential.\n'
        f"Only {passed_list} {verb} passed to this subprocess.\n"
        "If this worker needs additional env vars, add them to the `env` field "
        "in its persona .md frontmatter:\n"
        "\n"
        "  env: NPM_TOKEN, GITHUB_TOKEN"
    )
