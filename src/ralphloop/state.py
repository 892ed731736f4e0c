"""Loop state record and its markdown-with-frontmatter persistence."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import yaml

from .errors import CorruptStateError
from .util import iso_from_datetime, short_id

DEFAULT_STATE_RELPATH = Path(".claude") / "ralph-loop.local.md"

STOP_REASONS = ("completed", "max_iterations", "cancelled", "dry_run")

_FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)",
    re.DOTALL | re.MULTILINE,
)

_REQUIRED_KEYS = (
    "active",
    "iteration",
    "max_iterations",
    "completion_promise",
    "started_at",
)
_FLAG_KEYS = ("ask_me", "dry_run", "then_stop", "interview_complete")


@dataclass(frozen=True)
class LoopState:
    active: bool
    iteration: int
    max_iterations: int
    completion_promise: str | None
    started_at: str
    prompt_text: str
    ask_me: bool = False
    dry_run: bool = False
    then_stop: bool = False
    interview_complete: bool = False
    stop_reason: str | None = field(default=None)

    def header(self) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "active": self.active,
            "iteration": self.iteration,
            "max_iterations": self.max_iterations,
            "completion_promise": self.completion_promise,
            "ask_me": self.ask_me,
            "dry_run": self.dry_run,
            "then_stop": self.then_stop,
            "interview_complete": self.interview_complete,
            "started_at": self.started_at,
        }
        if self.stop_reason is not None:
            meta["stop_reason"] = self.stop_reason
        return meta

    def to_dict(self) -> dict[str, Any]:
        data = self.header()
        data["stop_reason"] = self.stop_reason
        data["prompt"] = self.prompt_text
        return data


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def render_state(state: LoopState) -> str:
    header = yaml.safe_dump(
        state.header(),
        sort_keys=False,
        default_flow_style=False,
    )
    return f"---\n{header}---\n\n{state.prompt_text}\n"


def split_frontmatter(text: str) -> tuple[str, str] | None:
    """Split ``text`` into (yaml header, body) or return None without a header."""
    match = _FRONTMATTER_RE.match(text)
    if match is None:
        return None
    body = text[match.end() :]
    if body.startswith("\n"):
        body = body[1:]
    if body.endswith("\n"):
        body = body[:-1]
    return match.group(1), body


def _require_bool(meta: dict[str, Any], key: str, path: object) -> bool:
    value = meta[key]
    if not isinstance(value, bool):
        raise CorruptStateError(path, f"{key} must be true or false, got {value!r}")
    return value


def _require_int(meta: dict[str, Any], key: str, path: object, *, minimum: int) -> int:
    value = meta[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise CorruptStateError(path, f"{key} must be an integer, got {value!r}")
    if value < minimum:
        raise CorruptStateError(path, f"{key} must be >= {minimum}, got {value}")
    return value


def _optional_str(meta: dict[str, Any], key: str, path: object) -> str | None:
    value = meta.get(key)
    if value is None or isinstance(value, str):
        return value
    raise CorruptStateError(path, f"{key} must be a string or null, got {value!r}")


def parse_state(text: str, *, path: object = "<memory>") -> LoopState:
    parts = split_frontmatter(text)
    if parts is None:
        raise CorruptStateError(path, "missing --- frontmatter header")
    raw_header, body = parts
    try:
        meta = yaml.safe_load(raw_header)
    except yaml.YAMLError as exc:
        raise CorruptStateError(path, f"invalid YAML header: {exc}") from exc
    if not isinstance(meta, dict):
        raise CorruptStateError(path, "frontmatter header must be a mapping")

    missing = [key for key in _REQUIRED_KEYS if key not in meta]
    if missing:
        raise CorruptStateError(path, "missing field(s): " + ", ".join(missing))

    started_at = meta["started_at"]
    if isinstance(started_at, datetime):
        started_at = iso_from_datetime(started_at)
    elif not isinstance(started_at, str):
        raise CorruptStateError(path, f"started_at must be a timestamp, got {started_at!r}")

    flags = {}
    for key in _FLAG_KEYS:
        flags[key] = _require_bool(meta, key, path) if key in meta else False

    stop_reason = _optional_str(meta, "stop_reason", path)
    if stop_reason is not None and stop_reason not in STOP_REASONS:
        raise CorruptStateError(path, f"unknown stop_reason {stop_reason!r}")

    return LoopState(
        active=_require_bool(meta, "active", path),
        iteration=_require_int(meta, "iteration", path, minimum=1),
        max_iterations=_require_int(meta, "max_iterations", path, minimum=0),
        completion_promise=_optional_str(meta, "completion_promise", path),
        started_at=started_at,
        prompt_text=body,
        stop_reason=stop_reason,
        **flags,
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class StateStore(Protocol):
    def load(self) -> LoopState | None: ...

    def save(self, state: LoopState) -> None: ...

    def exists(self) -> bool: ...

    def clear(self) -> None: ...


class FileStateStore:
    """Single loop record stored as markdown with a YAML header."""

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def from_workdir(cls, root: Path | None = None) -> FileStateStore:
        root = root or Path.cwd()
        return cls(root / DEFAULT_STATE_RELPATH)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> LoopState | None:
        try:
            with open(self.path, encoding="utf-8", newline="") as f:
                text = f.read()
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as exc:
            raise CorruptStateError(self.path, f"not UTF-8 text: {exc}") from exc
        return parse_state(text, path=self.path)

    def save(self, state: LoopState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f".{self.path.name}.{short_id()}.tmp")
        data = render_state(state)
        try:
            with open(tmp, "w", encoding="utf-8", newline="") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class MemoryStateStore:
    """In-memory store holding the serialized record, as a file would."""

    def __init__(self, state: LoopState | None = None) -> None:
        self.text: str | None = render_state(state) if state is not None else None
        self.saves = 0

    def exists(self) -> bool:
        return self.text is not None

    def load(self) -> LoopState | None:
        if self.text is None:
            return None
        return parse_state(self.text)

    def save(self, state: LoopState) -> None:
        self.text = render_state(state)
        self.saves += 1

    def clear(self) -> None:
        self.text = None
