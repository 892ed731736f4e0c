from __future__ import annotations

from pathlib import Path

from ralphloop.config import EVENTS_ENV_VAR, STATE_FILE_ENV_VAR, load_config, resolve_state_path


def _write_config(root: Path, text: str) -> Path:
    path = root / ".claude" / "ralph-loop.toml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_config(tmp_path: Path) -> None:
    cfg = load_config(tmp_path, env={})

    assert cfg.error is None
    assert cfg.cwd == tmp_path.resolve()
    assert cfg.state_path == tmp_path.resolve() / ".claude" / "ralph-loop.local.md"
    assert cfg.events is True
    assert cfg.output is None
    assert cfg.source is None


def test_reads_loop_table(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        """
[loop]
state_file = "state/loop.md"
events = false
output = "Rich"
""".strip(),
    )

    cfg = load_config(tmp_path, env={})

    assert cfg.error is None
    assert cfg.source == path.resolve()
    assert cfg.state_path == tmp_path.resolve() / "state" / "loop.md"
    assert cfg.events is False
    assert cfg.output == "rich"


def test_env_state_file_overrides_config(tmp_path: Path) -> None:
    _write_config(tmp_path, '[loop]\nstate_file = "from-config.md"\n')

    cfg = load_config(tmp_path, env={STATE_FILE_ENV_VAR: "from-env.md"})

    assert cfg.state_path == tmp_path.resolve() / "from-env.md"


def test_absolute_env_state_file(tmp_path: Path) -> None:
    target = tmp_path / "elsewhere" / "loop.md"
    assert resolve_state_path(tmp_path / "project", env={STATE_FILE_ENV_VAR: str(target)}) == target


def test_events_env_override(tmp_path: Path) -> None:
    assert load_config(tmp_path, env={EVENTS_ENV_VAR: "off"}).events is False
    assert load_config(tmp_path, env={EVENTS_ENV_VAR: "1"}).events is True


def test_invalid_events_env_reports_error(tmp_path: Path) -> None:
    cfg = load_config(tmp_path, env={EVENTS_ENV_VAR: "sometimes"})
    assert cfg.error is not None
    assert EVENTS_ENV_VAR in cfg.error


def test_invalid_toml_reports_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "[loop\n")

    cfg = load_config(tmp_path, env={})

    assert cfg.error is not None
    assert cfg.error.startswith("invalid TOML in .claude/ralph-loop.toml")
    assert cfg.state_path == tmp_path.resolve() / ".claude" / "ralph-loop.local.md"


def test_unknown_keys_report_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "[loop]\nbackend = 'codex'\n")
    cfg = load_config(tmp_path, env={})
    assert cfg.error == ".claude/ralph-loop.toml: unknown [loop] key(s): backend"


def test_invalid_output_reports_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "[loop]\noutput = 'fancy'\n")
    cfg = load_config(tmp_path, env={})
    assert cfg.error is not None
    assert "[loop].output must be one of: auto, plain, rich" in cfg.error


def test_loop_table_must_be_a_table(tmp_path: Path) -> None:
    _write_config(tmp_path, "loop = 3\n")
    cfg = load_config(tmp_path, env={})
    assert cfg.error is not None
    assert "[loop] must be a table" in cfg.error
