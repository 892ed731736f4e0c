from __future__ import annotations

import os
import sys
from collections.abc import Mapping, Sequence
from typing import Literal, TextIO

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

OUTPUT_ENV_VAR = "RALPH_LOOP_OUTPUT"
OUTPUT_CHOICES = ("auto", "plain", "rich")
OutputMode = Literal["plain", "rich"]


def _normalize_choice(raw: str | None, *, source: str) -> str | None:
    if raw is None:
        return None
    value = raw.strip().lower()
    if not value:
        return None
    if value not in OUTPUT_CHOICES:
        expected = ", ".join(OUTPUT_CHOICES)
        raise ValueError(f"invalid {source} value {raw!r}; expected one of: {expected}")
    return value


def _stream_is_tty(stream: object) -> bool:
    probe = getattr(stream, "isatty", None)
    if not callable(probe):
        return False
    try:
        return bool(probe())
    except (OSError, ValueError):
        return False


def resolve_output_mode(
    requested: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    configured: str | None = None,
    is_tty: bool | None = None,
) -> OutputMode:
    """Pick plain or rich output: flag, then env, then config file, then tty."""
    env = os.environ if env is None else env
    selected = _normalize_choice(requested, source="--output")
    if selected is None:
        selected = _normalize_choice(env.get(OUTPUT_ENV_VAR), source=OUTPUT_ENV_VAR)
    if selected is None:
        selected = _normalize_choice(configured, source="[loop].output")
    if selected is None:
        selected = "auto"

    if selected == "auto":
        tty = _stream_is_tty(sys.stdout) if is_tty is None else bool(is_tty)
        return "rich" if tty else "plain"
    return "rich" if selected == "rich" else "plain"


def make_console(mode: OutputMode, *, stderr: bool = False) -> Console:
    return Console(
        file=sys.stderr if stderr else sys.stdout,
        force_terminal=mode == "rich",
        no_color=mode != "rich",
        highlight=False,
        emoji=False,
        soft_wrap=mode != "rich",
    )


def render_table(
    console: Console,
    *,
    headers: Sequence[str],
    rows: Sequence[Sequence[object]],
    title: str | None = None,
    no_wrap_columns: Sequence[int] = (),
) -> None:
    table = Table(title=title)
    no_wrap = set(no_wrap_columns)
    for idx, header in enumerate(headers):
        table.add_column(str(header), no_wrap=idx in no_wrap)
    for row in rows:
        table.add_row(*(str(value if value is not None else "") for value in row))
    console.print(table)


def render_panel(console: Console, body: str, *, title: str | None = None, style: str = "") -> None:
    console.print(Panel(body, title=title, style=style, expand=False))


def render_block(console: Console, mode: OutputMode, body: str, *, title: str | None = None) -> None:
    """Print a multi-line message verbatim in plain mode, boxed in rich mode."""
    if mode == "rich":
        console.print(Panel(Text(body), title=title, expand=False))
        return
    console.print(body, markup=False)


def render_plain_help(
    *,
    command: str,
    summary: str,
    usage: Sequence[str],
    sections: Sequence[tuple[str, Sequence[tuple[str, str]]]],
    examples: Sequence[tuple[str, str]] = (),
    stderr: bool = False,
) -> None:
    stream: TextIO = sys.stderr if stderr else sys.stdout

    print(f"{command}  {summary}", file=stream)
    print(file=stream)
    print("Usage", file=stream)
    for line in usage:
        print(f"  {line}", file=stream)

    for title, rows in (*sections, ("Examples", examples)):
        if not rows:
            continue
        print(file=stream)
        print(title, file=stream)
        width = max(len(str(item)) for item, _ in rows)
        for item, description in rows:
            left = str(item)
            right = str(description)
            if right:
                print(f"  {left.ljust(width)}  {right}", file=stream)
            else:
                print(f"  {left}", file=stream)


def render_rich_help(
    *,
    command: str,
    summary: str,
    usage: Sequence[str],
    sections: Sequence[tuple[str, Sequence[tuple[str, str]]]],
    examples: Sequence[tuple[str, str]] = (),
    stderr: bool = False,
) -> None:
    console = make_console("rich", stderr=stderr)
    render_panel(console, summary, title=f"[bold blue]{command}[/bold blue]")
    console.print()
    console.print("[bold]Usage[/bold]")
    for line in usage:
        console.print(f"  {line}", markup=False)

    for title, rows in sections:
        if not rows:
            continue
        console.print()
        render_table(
            console,
            title=title,
            headers=("Item", "Description"),
            rows=rows,
            no_wrap_columns=(0,),
        )

    if examples:
        console.print()
        render_table(
            console,
            title="Examples",
            headers=("Command", "Purpose"),
            rows=examples,
            no_wrap_columns=(0,),
        )


def render_help(
    *,
    output_mode: OutputMode,
    command: str,
    summary: str,
    usage: Sequence[str],
    sections: Sequence[tuple[str, Sequence[tuple[str, str]]]],
    examples: Sequence[tuple[str, str]] = (),
    stderr: bool = False,
) -> None:
    if output_mode == "rich":
        render_rich_help(
            command=command,
            summary=summary,
            usage=usage,
            sections=sections,
            examples=examples,
            stderr=stderr,
        )
        return

    render_plain_help(
        command=command,
        summary=summary,
        usage=usage,
        sections=sections,
        examples=examples,
        stderr=stderr,
    )
