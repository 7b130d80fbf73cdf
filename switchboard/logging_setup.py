"""Logging configuration for switchboard entry points."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog

_SECRET_KEY_RE = re.compile(r"(_API_KEY|_TOKEN|_SECRET|PASSWORD)$", re.IGNORECASE)
_MASK = "***"
_TRUNCATED_KEYS = {"task", "prompt", "output"}
_MAX_DISPLAY_LEN = 80


def _mask(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: (_MASK if isinstance(k, str) and _SECRET_KEY_RE.search(k) else _mask(v))
            for k, v in value.items()
        }
    return value


def _redact_credentials(logger, method_name, event_dict):
    """
    Structlog processor that keeps credential values out of log output.

    Any field (or nested mapping key) named like ``*_API_KEY`` or ``*_TOKEN``
    has its value replaced. Long task and output text is truncated.
    """
    for key in list(event_dict):
        if _SECRET_KEY_RE.search(key):
            event_dict[key] = _MASK
            continue
        value = event_dict[key]
        if isinstance(value, dict):
            event_dict[key] = _mask(value)
        elif key in _TRUNCATED_KEYS and isinstance(value, str) and len(value) > _MAX_DISPLAY_LEN:
            event_dict[key] = value[:_MAX_DISPLAY_LEN] + "... [truncated]"
    return event_dict


_logging_configured = False


def configure_logging(verbose: bool = False, colors: bool = True) -> None:
    """Configure structlog and standard-library logging.

    Safe to call more than once; only the first call takes effect.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.WARNING,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _redact_credentials,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
