from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import tomllib

from .state import DEFAULT_STATE_RELPATH

CONFIG_RELPATH = Path(".claude") / "ralph-loop.toml"

STATE_FILE_ENV_VAR = "RALPH_LOOP_STATE_FILE"
EVENTS_ENV_VAR = "RALPH_LOOP_EVENTS"

_OUTPUT_CHOICES = ("auto", "plain", "rich")
_FALSE_WORDS = {"0", "false", "no", "off"}
_TRUE_WORDS = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class LoopConfig:
    cwd: Path
    state_path: Path
    events: bool = True
    output: str | None = None
    source: Path | None = None
    error: str | None = None


class ConfigValidationError(ValueError):
    pass


def _as_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    return stripped


def _parse_bool_env(raw: str, *, name: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ConfigValidationError(f"{name} must be one of 0/1/true/false, got {raw!r}")


def _parse_loop_table(raw: object) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigValidationError("[loop] must be a table")

    out: dict[str, Any] = {}
    if "state_file" in raw:
        path = _as_str(raw["state_file"])
        if path is None:
            raise ConfigValidationError("[loop].state_file must be a non-empty string")
        out["state_file"] = path
    if "events" in raw:
        if not isinstance(raw["events"], bool):
            raise ConfigValidationError("[loop].events must be true or false")
        out["events"] = raw["events"]
    if "output" in raw:
        output = _as_str(raw["output"])
        if output is None or output.lower() not in _OUTPUT_CHOICES:
            expected = ", ".join(_OUTPUT_CHOICES)
            raise ConfigValidationError(f"[loop].output must be one of: {expected}")
        out["output"] = output.lower()

    unknown = sorted(set(raw) - {"state_file", "events", "output"})
    if unknown:
        raise ConfigValidationError("unknown [loop] key(s): " + ", ".join(unknown))
    return out


def _resolve(cwd: Path, raw: str) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = cwd / path
    return path


def load_config(cwd: Path | None = None, *, env: Mapping[str, str] | None = None) -> LoopConfig:
    """Resolve loop settings from the environment, then the TOML file."""
    cwd = (cwd or Path.cwd()).resolve()
    env = os.environ if env is None else env
    default_state = cwd / DEFAULT_STATE_RELPATH
    config_path = cwd / CONFIG_RELPATH

    table: dict[str, Any] = {}
    source: Path | None = None
    if config_path.is_file():
        source = config_path
        try:
            raw = tomllib.loads(config_path.read_text(encoding="utf-8"))
        except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
            return LoopConfig(
                cwd=cwd,
                state_path=default_state,
                source=source,
                error=f"invalid TOML in {CONFIG_RELPATH.as_posix()}: {exc}",
            )
        try:
            table = _parse_loop_table(raw.get("loop"))
        except ConfigValidationError as exc:
            return LoopConfig(
                cwd=cwd,
                state_path=default_state,
                source=source,
                error=f"{CONFIG_RELPATH.as_posix()}: {exc}",
            )

    state_path = default_state
    if "state_file" in table:
        state_path = _resolve(cwd, table["state_file"])
    env_state = _as_str(env.get(STATE_FILE_ENV_VAR))
    if env_state:
        state_path = _resolve(cwd, env_state)

    events = table.get("events", True)
    raw_events = _as_str(env.get(EVENTS_ENV_VAR))
    if raw_events is not None:
        try:
            events = _parse_bool_env(raw_events, name=EVENTS_ENV_VAR)
        except ConfigValidationError as exc:
            return LoopConfig(cwd=cwd, state_path=state_path, source=source, error=str(exc))

    return LoopConfig(
        cwd=cwd,
        state_path=state_path,
        events=events,
        output=table.get("output"),
        source=source,
    )


def resolve_state_path(cwd: Path | None = None, *, env: Mapping[str, str] | None = None) -> Path:
    return load_config(cwd, env=env).state_path
