"""Interview prompt rendering.

Prompt files live in ``prompts/``. A file may open with a ``---`` header,
which is dropped, may pull in a sibling file with a ``{{> name.md}}`` line
(one level deep), and fills ``{{NAME}}`` placeholders from the loop state.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path

from .controller import DEFAULT_INTERVIEW_PROMISE
from .state import LoopState, split_frontmatter

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
INTERVIEW_PROMPT = "interview.md"

_INCLUDE_LINE_RE = re.compile(r"^\{\{>\s*([\w.-]+\.md)\s*\}\}[ \t]*$", re.MULTILINE)
_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_]+)\}\}")

_MODE_SECTIONS = {
    "dry_run": "mode_dry_run.md",
    "then_stop": "mode_then_stop.md",
}


def _read_prompt(name: str, prompts_dir: Path) -> str:
    text = (prompts_dir / name).read_text(encoding="utf-8")
    parts = split_frontmatter(text)
    if parts is None:
        return text
    return parts[1] + "\n"


def render_prompt(
    name: str,
    fields: Mapping[str, str],
    *,
    prompts_dir: Path = PROMPTS_DIR,
) -> str:
    """Render ``name`` with its includes inlined and every placeholder filled.

    Placeholders are filled in a single pass, so field values are inserted
    verbatim even when they contain ``{{...}}`` text themselves.
    """

    def include(match: re.Match[str]) -> str:
        return _read_prompt(match.group(1), prompts_dir).rstrip("\n")

    text = _INCLUDE_LINE_RE.sub(include, _read_prompt(name, prompts_dir))

    def fill(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in fields:
            raise ValueError(f"{name}: no value for placeholder {{{{{key}}}}}")
        return fields[key]

    return _PLACEHOLDER_RE.sub(fill, text)


def _mode_section(state: LoopState, prompts_dir: Path) -> str:
    if state.dry_run:
        section = _MODE_SECTIONS["dry_run"]
    elif state.then_stop:
        section = _MODE_SECTIONS["then_stop"]
    else:
        return ""
    return "\n" + _read_prompt(section, prompts_dir).strip("\n") + "\n"


def interview_fields(
    state: LoopState,
    *,
    state_file: str,
    prompts_dir: Path = PROMPTS_DIR,
) -> dict[str, str]:
    return {
        "TOPIC": state.prompt_text,
        "STATE_FILE": state_file,
        "PROMISE": state.completion_promise or DEFAULT_INTERVIEW_PROMISE,
        "MODE": _mode_section(state, prompts_dir),
    }


def render_interview(
    state: LoopState,
    *,
    state_file: str,
    prompts_dir: Path = PROMPTS_DIR,
) -> str:
    fields = interview_fields(state, state_file=state_file, prompts_dir=prompts_dir)
    return render_prompt(INTERVIEW_PROMPT, fields, prompts_dir=prompts_dir)
