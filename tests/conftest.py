from __future__ import annotations

import io
from pathlib import Path

import pytest

from ralphloop.config import EVENTS_ENV_VAR, STATE_FILE_ENV_VAR
from ralphloop.state import LoopState
from ralphloop.ui import OUTPUT_ENV_VAR


@pytest.fixture
def stdout() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in (STATE_FILE_ENV_VAR, EVENTS_ENV_VAR, OUTPUT_ENV_VAR):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def state_path(workdir: Path) -> Path:
    return workdir / ".claude" / "ralph-loop.local.md"


def _make_state(**overrides: object) -> LoopState:
    fields: dict[str, object] = {
        "active": True,
        "iteration": 1,
        "max_iterations": 0,
        "completion_promise": None,
        "started_at": "2026-01-13T09:30:00Z",
        "prompt_text": "Build a todo API",
    }
    fields.update(overrides)
    return LoopState(**fields)  # type: ignore[arg-type]


@pytest.fixture
def make_state():
    return _make_state
