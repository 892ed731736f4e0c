"""Stop-hook adapter: translate a host exit attempt into a loop decision."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, TextIO

from .config import load_config
from .controller import CONTINUE, NO_LOOP, ExitDecision, LoopController
from .errors import CorruptStateError
from .events import EventLog
from .messages import stop_message
from .state import FileStateStore
from .util import eprint


def read_hook_input(stream: TextIO) -> dict[str, Any]:
    raw = stream.read()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _message_text(entry: dict[str, Any]) -> str | None:
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    role = message.get("role") or entry.get("type")
    if role != "assistant":
        return None
    content = message.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return None
    texts = [
        part["text"]
        for part in content
        if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str)
    ]
    if not texts:
        return None
    return "\n".join(texts)


def last_assistant_text(transcript_path: Path) -> str:
    """Return the text of the last assistant message in a JSONL transcript."""
    try:
        handle = open(transcript_path, encoding="utf-8")
    except OSError:
        return ""
    last = ""
    with handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(entry, dict):
                continue
            text = _message_text(entry)
            if text is not None:
                last = text
    return last


def hook_response(result: ExitDecision, *, state_file: str) -> dict[str, Any] | None:
    if result.decision == NO_LOOP:
        return None
    message = stop_message(result.decision, result.state, state_file=state_file)
    if result.decision == CONTINUE:
        assert result.state is not None
        response: dict[str, Any] = {
            "decision": "block",
            "reason": result.state.prompt_text,
        }
        if message:
            response["systemMessage"] = message
        return response
    if message:
        return {"systemMessage": message}
    return None


def run_hook(stdin: TextIO, stdout: TextIO, *, cwd: Path | None = None) -> int:
    payload = read_hook_input(stdin)
    hook_cwd = payload.get("cwd")
    if cwd is None and isinstance(hook_cwd, str) and hook_cwd:
        cwd = Path(hook_cwd)

    cfg = load_config(cwd)
    if cfg.error:
        eprint(f"ralph-loop: {cfg.error}")
    store = FileStateStore(cfg.state_path)
    emit = EventLog.beside(cfg.state_path) if cfg.events else None
    controller = LoopController(store, emit=emit)

    transcript = payload.get("transcript_path")
    latest = last_assistant_text(Path(transcript)) if isinstance(transcript, str) and transcript else ""

    try:
        result = controller.on_exit_attempt(latest)
    except CorruptStateError as exc:
        # Never trap the host in a loop it cannot parse.
        eprint(f"ralph-loop: {exc}; allowing exit. Start a new loop to overwrite it.")
        return 0

    try:
        state_file = cfg.state_path.relative_to(cfg.cwd).as_posix()
    except ValueError:
        state_file = str(cfg.state_path)
    response = hook_response(result, state_file=state_file)
    if response is not None:
        stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
        stdout.flush()
    return 0
