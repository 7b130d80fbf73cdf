"""
Worker Event Stream — Incremental decoding of line-delimited JSON.

A worker in JSON mode writes one event object per line on stdout. Pipe reads
do not respect line boundaries, so the decoder keeps the trailing fragment of
each chunk and retries it when more text arrives, and once more at process
exit. Framing is authoritative: a line that fails to decode is dropped and the
stream carries on.

Only three event kinds matter to the orchestrator:

  TextDelta    — incremental assistant text
  ToolStarted  — the worker began a tool call
  TurnEnded    — a message or the whole agent run finished; carries token
                 usage when the worker reports it
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Union

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolStarted:
    name: str = ""


@dataclass(frozen=True)
class TurnEnded:
    input_tokens: Optional[int] = None


WorkerEvent = Union[TextDelta, ToolStarted, TurnEnded]


def _usage_input(message: Any) -> Optional[int]:
    if not isinstance(message, dict):
        return None
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return None
    value = usage.get("input")
    if isinstance(value, (int, float)):
        return int(value)
    return None


def decode_event(line: str) -> Optional[WorkerEvent]:
    """Decode one line into a WorkerEvent, or None if it is not one we track."""
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("stream.malformed_line", preview=line[:80])
        return None
    if not isinstance(data, dict):
        return None

    kind = data.get("type")
    if kind == "message_update":
        delta = data.get("assistantMessageEvent")
        if isinstance(delta, dict) and delta.get("type") == "text_delta":
            return TextDelta(str(delta.get("delta") or ""))
        return None

    if kind == "tool_execution_start":
        return ToolStarted(str(data.get("toolName") or data.get("name") or ""))

    if kind == "message_end":
        return TurnEnded(_usage_input(data.get("message")))

    if kind == "agent_end":
        messages = data.get("messages") or []
        last_assistant = next(
            (
                m
                for m in reversed(messages)
                if isinstance(m, dict) and m.get("role") == "assistant"
            ),
            None,
        )
        return TurnEnded(_usage_input(last_assistant))

    return None


class EventStreamDecoder:
    """Buffers stdout text and yields decoded events for each complete line."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        """The partial trailing fragment not yet terminated by a newline."""
        return self._buffer

    def feed(self, chunk: str) -> list[WorkerEvent]:
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        events: list[WorkerEvent] = []
        for line in lines:
            event = decode_event(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[WorkerEvent]:
        """Decode whatever is left once the process has exited."""
        remainder, self._buffer = self._buffer, ""
        event = decode_event(remainder)
        return [event] if event is not None else []


def last_nonblank_line(text: str) -> str:
    for line in reversed(text.split("\n")):
        if line.strip():
            return line
    return ""
