from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

EVENT_LOG_VERSION = 1

LOOP_START = "loop.start"
LOOP_CONTINUE = "loop.continue"
LOOP_HALT = "loop.halt"
LOOP_AWAIT = "loop.await"
LOOP_RESUME = "loop.resume"
LOOP_CANCEL = "loop.cancel"
LOOP_INTERVIEW_COMPLETE = "loop.interview_complete"


@dataclass(frozen=True)
class LoopEvent:
    type: str
    timestamp: str
    iteration: int | None
    payload: dict[str, Any] = field(default_factory=dict)


EventSink = Callable[[LoopEvent], None]


def event_log_path(state_path: Path) -> Path:
    return state_path.with_suffix(".events.jsonl")


def encode_row(event: LoopEvent) -> bytes:
    """One compact JSON line; ``iteration`` is omitted when there is no record."""
    row: dict[str, Any] = {
        "v": EVENT_LOG_VERSION,
        "ts": event.timestamp,
        "type": event.type,
    }
    if event.iteration is not None:
        row["iteration"] = event.iteration
    row["payload"] = event.payload
    return (json.dumps(row, separators=(",", ":"), ensure_ascii=True) + "\n").encode("ascii")


@contextmanager
def _appending(path: Path) -> Iterator[int]:
    """Open ``path`` for appending, holding an exclusive flock where available.

    The stop hook and a ``cancel`` from another terminal can log at the same
    moment; the lock keeps their rows whole.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
    try:
        if sys.platform == "win32":
            yield fd
            return
        import fcntl

        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            yield fd
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class EventLog:
    """Append-only JSONL history kept beside a loop's state file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def beside(cls, state_path: Path) -> EventLog:
        return cls(event_log_path(state_path))

    def __call__(self, event: LoopEvent) -> None:
        self.append(event)

    def append(self, event: LoopEvent) -> None:
        pending = memoryview(encode_row(event))
        with _appending(self.path) as fd:
            while pending:
                pending = pending[os.write(fd, pending) :]

    def read(self) -> list[dict[str, Any]]:
        """Return every parseable row; a torn or hand-edited line is skipped."""
        try:
            with open(self.path, encoding="utf-8") as f:
                lines = f.read().splitlines()
        except FileNotFoundError:
            return []
        rows: list[dict[str, Any]] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(row, dict):
                rows.append(row)
        return rows
