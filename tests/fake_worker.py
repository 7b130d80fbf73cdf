"""
Stand-in for the worker binary, driven by the task argument.

Speaks the same line-delimited JSON on stdout as the real binary in JSON
mode. The task (last argv element) selects the behavior:

  "sleep"       never finishes on its own
  "auth-fail"   prints a 401 and exits 1
  "crash"       writes to stderr and exits 3
  "env"         reports the names of its environment variables
  anything else echoes the task, its flags and one tool call, exit 0
"""

from __future__ import annotations

import json
import os
import sys
import time


def emit(obj: dict) -> None:
    sys.stdout.write(json.dumps(obj) + "\n")
    sys.stdout.flush()


def text(delta: str) -> None:
    emit({"type": "message_update", "assistantMessageEvent": {"type": "text_delta", "delta": delta}})


def main(argv: list[str]) -> int:
    task = argv[-1] if argv else ""
    session = argv[argv.index("--session") + 1] if "--session" in argv else ""

    if task == "sleep":
        text("starting\n")
        time.sleep(60)
        return 0

    if task == "auth-fail":
        text("Error: 401 Unauthorized\n")
        return 1

    if task == "crash":
        sys.stderr.write("boom: something broke\n")
        sys.stderr.flush()
        return 3

    if task == "env":
        text(",".join(sorted(os.environ)))
        return 0

    emit({"type": "agent_start"})
    text(f"task={task}\n")
    emit({"type": "tool_execution_start", "toolName": "read"})
    sys.stdout.write("this line is not json\n")
    text(f"resume={'-c' in argv}\n")

    # one event split across two writes
    line = json.dumps(
        {"type": "message_update", "assistantMessageEvent": {"type": "text_delta", "delta": "done"}}
    )
    sys.stdout.write(line[:20])
    sys.stdout.flush()
    time.sleep(0.05)
    sys.stdout.write(line[20:] + "\n")
    sys.stdout.flush()

    emit({"type": "message_end", "message": {"role": "assistant", "usage": {"input": 500}}})

    if session:
        with open(session, "w", encoding="utf-8") as fh:
            fh.write("{}\n")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
