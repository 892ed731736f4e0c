"""CLI entry point for ralph-loop."""

from __future__ import annotations

import argparse
import json
import re
import sys
from pathlib import Path
from typing import NoReturn, Sequence

from rich.console import Console

from . import __version__
from .config import LoopConfig, load_config
from .controller import LoopController, is_resumable, loop_phase
from .errors import (
    CorruptStateError,
    InterviewStateError,
    InvalidArgumentError,
    LoopActiveError,
    NotResumableError,
)
from .events import EventLog
from .hook import run_hook
from .messages import (
    activation_message,
    cancel_message,
    describe_limit,
    interview_mode_note,
    promise_banner,
    resume_message,
)
from .state import FileStateStore, LoopState
from .templates import render_interview
from .ui import OutputMode, make_console, render_block, render_help, render_table, resolve_output_mode
from .util import eprint, preview

PROG = "ralph-loop"
EXIT_OK = 0
EXIT_ERROR = 1
SUBCOMMANDS = ("resume", "cancel", "status", "interview-done", "hook")

_COUNT_RE = re.compile(r"[0-9]+")

_MAX_ITERATIONS_HINTS = (
    "Valid examples:",
    "  --max-iterations 10",
    "  --max-iterations 50",
    "  --max-iterations 0  (unlimited)",
    "Invalid: decimals (10.5), negative numbers (-5), text",
)
_PROMISE_HINTS = (
    "Valid examples:",
    "  --completion-promise 'DONE'",
    "  --completion-promise 'TASK COMPLETE'",
    "Multi-word promises must be quoted.",
)
_NO_PROMPT_HINTS = (
    "Ralph needs a task description to work on.",
    "Examples:",
    f"  {PROG} Build a REST API for todos",
    f"  {PROG} Fix the auth bug --max-iterations 20",
    f"  {PROG} --completion-promise 'DONE' Refactor code",
    f"  {PROG} --ask-me  (Ralph will ask what to build!)",
    f"For all options: {PROG} --help",
)
_OPTION_WORD_HINTS = (
    "Prompt words that start with '-' or with a command name go after --:",
    f"  {PROG} -- fix the -v flag",
    f"  {PROG} --max-iterations 5 -- hook up the payment webhooks",
)


class _ArgumentParser(argparse.ArgumentParser):
    """argparse that reports bad input with exit status 1."""

    def error(self, message: str) -> NoReturn:
        _usage_error(self, message)


def _usage_error(parser: argparse.ArgumentParser, message: str, hints: Sequence[str] = ()) -> NoReturn:
    parser.print_usage(sys.stderr)
    eprint(f"{parser.prog}: error: {message}")
    if hints:
        eprint()
        for line in hints:
            eprint(f"   {line}")
    raise SystemExit(EXIT_ERROR)


def _parse_count(parser: argparse.ArgumentParser, raw: str | None) -> int | None:
    if raw is None:
        return None
    if not _COUNT_RE.fullmatch(raw):
        _usage_error(
            parser,
            f"--max-iterations must be a positive integer or 0, got: {raw}",
            _MAX_ITERATIONS_HINTS,
        )
    return int(raw)


def _check_promise(parser: argparse.ArgumentParser, raw: str | None) -> str | None:
    if raw is not None and raw == "":
        _usage_error(parser, "--completion-promise requires a text argument", _PROMISE_HINTS)
    return raw


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-h", "--help", action="store_true")
    parser.add_argument("--output", default=None)


def _start_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(prog=PROG, add_help=False)
    p.add_argument("prompt", nargs="*")
    p.add_argument("--max-iterations", default=None, metavar="N")
    p.add_argument("--completion-promise", default=None, metavar="TEXT")
    p.add_argument("--ask-me", action="store_true")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--then-stop", action="store_true")
    p.add_argument("--force", action="store_true")
    _add_common(p)
    return p


def _resume_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(prog=f"{PROG} resume", add_help=False)
    p.add_argument("--max-iterations", default=None, metavar="N")
    _add_common(p)
    return p


def _cancel_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(prog=f"{PROG} cancel", add_help=False)
    _add_common(p)
    return p


def _status_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(prog=f"{PROG} status", add_help=False)
    p.add_argument("--json", action="store_true")
    _add_common(p)
    return p


def _interview_done_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(prog=f"{PROG} interview-done", add_help=False)
    p.add_argument("prompt", nargs="*")
    p.add_argument("--prompt-file", default=None, metavar="PATH")
    p.add_argument("--completion-promise", default=None, metavar="TEXT")
    p.add_argument("--max-iterations", default=None, metavar="N")
    _add_common(p)
    return p


# ---------------------------------------------------------------------------
# Help
# ---------------------------------------------------------------------------

_HELP: dict[str, dict[str, object]] = {
    "start": {
        "summary": "Interactive self-referential development loop",
        "usage": (
            f"{PROG} [PROMPT...] [OPTIONS]",
            f"{PROG} resume | cancel | status | interview-done | hook",
        ),
        "sections": (
            (
                "Options",
                (
                    ("--max-iterations <n>", "Maximum iterations before auto-stop (default: unlimited)"),
                    ("--completion-promise '<text>'", "Promise phrase (USE QUOTES for multi-word)"),
                    ("--ask-me", "Interview me (as Ralph Wiggum) to build the prompt"),
                    ("--dry-run", "Test interview only, don't write specs or start loop"),
                    ("--then-stop", "Generate spec but stop before starting loop (for review)"),
                    ("--force", "Replace a loop that is still active"),
                    ("--output auto|plain|rich", "Output mode"),
                    ("--", "Treat every later word as prompt text"),
                    ("--version", "Show version"),
                    ("-h, --help", "Show this help message"),
                ),
            ),
            (
                "Commands",
                (
                    ("resume [--max-iterations n]", "Start the loop from a reviewed --then-stop spec"),
                    ("cancel", "Stop the active loop"),
                    ("status [--json]", "Show the current loop state"),
                    ("interview-done", "Record the spec produced by an --ask-me interview"),
                    ("hook", "Stop-hook entry point (reads hook JSON on stdin)"),
                ),
            ),
            (
                "Stopping",
                (
                    ("--max-iterations", "Loop halts when the iteration limit is reached"),
                    ("<promise>TEXT</promise>", "Loop halts when the agent outputs the exact promise"),
                    (f"{PROG} cancel", "Halts the loop immediately"),
                ),
            ),
        ),
        "examples": (
            (f"{PROG} Build a todo API --completion-promise 'DONE' --max-iterations 20", ""),
            (f"{PROG} --max-iterations 10 Fix the auth bug", ""),
            (f"{PROG} Refactor cache layer", "runs until cancelled"),
            (f"{PROG} --ask-me Build a REST API", "Ralph interviews you first"),
            (f"{PROG} --ask-me --dry-run", "test the interview without writing specs"),
            (f"{PROG} --ask-me --then-stop", "generate spec, review before starting"),
            (f"{PROG} -- cancel the order flow", "prompt starting with a command word"),
        ),
    },
    "resume": {
        "summary": "Start the loop from a spec produced with --then-stop",
        "usage": (f"{PROG} resume [--max-iterations N]",),
        "sections": (
            ("Options", (("--max-iterations <n>", "Override the iteration limit stored in the spec"),)),
        ),
        "examples": ((f"{PROG} resume --max-iterations 30", ""),),
    },
    "cancel": {
        "summary": "Cancel the active loop (safe to repeat)",
        "usage": (f"{PROG} cancel",),
        "sections": (),
    },
    "status": {
        "summary": "Show the loop state for this directory",
        "usage": (f"{PROG} status [--json]",),
        "sections": (("Options", (("--json", "Print the state record as JSON"),)),),
    },
    "interview-done": {
        "summary": "Record the spec generated by an --ask-me interview",
        "usage": (
            f"{PROG} interview-done --prompt-file PATH [--completion-promise TEXT] [--max-iterations N]",
            f"{PROG} interview-done PROMPT... [--completion-promise TEXT] [--max-iterations N]",
        ),
        "sections": (
            (
                "Options",
                (
                    ("--prompt-file <path>", "Read the generated spec from a file ('-' for stdin)"),
                    ("--completion-promise '<text>'", "Promise phrase (default: COMPLETE)"),
                    ("--max-iterations <n>", "Iteration limit chosen in the interview"),
                ),
            ),
        ),
    },
}


def _print_help(command: str, mode: OutputMode) -> None:
    spec = _HELP[command]
    render_help(
        output_mode=mode,
        command=PROG if command == "start" else f"{PROG} {command}",
        summary=str(spec["summary"]),
        usage=spec["usage"],  # type: ignore[arg-type]
        sections=spec["sections"],  # type: ignore[arg-type]
        examples=spec.get("examples", ()),  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _display_path(cfg: LoopConfig) -> str:
    try:
        return cfg.state_path.relative_to(cfg.cwd).as_posix()
    except ValueError:
        return str(cfg.state_path)


def _controller(cfg: LoopConfig) -> LoopController:
    emit = EventLog.beside(cfg.state_path) if cfg.events else None
    return LoopController(FileStateStore(cfg.state_path), emit=emit)


def _load_quietly(controller: LoopController) -> LoopState | None:
    try:
        return controller.current()
    except CorruptStateError:
        return None


def _do_resume(
    controller: LoopController,
    cfg: LoopConfig,
    console: Console,
    mode: OutputMode,
    max_iterations: int | None,
) -> int:
    try:
        state = controller.resume(max_iterations=max_iterations)
    except CorruptStateError as exc:
        eprint(f"{PROG}: {exc}")
        eprint(f"   Start a new loop to overwrite it: {PROG} <prompt>")
        return EXIT_ERROR
    except NotResumableError as exc:
        eprint(f"{PROG}: cannot resume: {exc}")
        eprint(f"   Resume only works after `{PROG} --ask-me --then-stop` finished its interview.")
        return EXIT_ERROR
    except InvalidArgumentError as exc:
        eprint(f"{PROG}: {exc}")
        return EXIT_ERROR
    render_block(
        console,
        mode,
        resume_message(
            state,
            overridden=max_iterations is not None,
            state_file=_display_path(cfg),
        ),
        title="Resuming",
    )
    return EXIT_OK


def cmd_start(args: argparse.Namespace, parser: argparse.ArgumentParser, cfg: LoopConfig, console: Console, mode: OutputMode) -> int:
    max_iterations = _parse_count(parser, args.max_iterations)
    promise = _check_promise(parser, args.completion_promise)
    prompt = " ".join(args.prompt)
    controller = _controller(cfg)

    if not prompt and not args.ask_me:
        if is_resumable(_load_quietly(controller)):
            return _do_resume(controller, cfg, console, mode, max_iterations)
        _usage_error(parser, "No prompt provided", _NO_PROMPT_HINTS)

    try:
        state = controller.start(
            prompt,
            max_iterations=max_iterations or 0,
            completion_promise=promise,
            ask_me=args.ask_me,
            dry_run=args.dry_run,
            then_stop=args.then_stop,
            force=args.force,
        )
    except LoopActiveError as exc:
        eprint(f"{PROG}: {exc}")
        eprint(f"   Cancel it first with `{PROG} cancel`, or pass --force to replace it.")
        return EXIT_ERROR
    except InvalidArgumentError as exc:
        _usage_error(parser, str(exc))

    state_file = _display_path(cfg)
    if state.ask_me:
        interview = render_interview(state, state_file=state_file)
        console.print(interview, markup=False)
        note = interview_mode_note(state)
        if note:
            console.print()
            console.print(note, markup=False)
        return EXIT_OK

    render_block(console, mode, activation_message(state, state_file=state_file), title="Ralph Loop")
    console.print()
    console.print(state.prompt_text, markup=False)
    if state.completion_promise is not None:
        console.print()
        console.print(promise_banner(state.completion_promise), markup=False)
    return EXIT_OK


def cmd_resume(argv: list[str], cfg: LoopConfig, console: Console, mode: OutputMode) -> int:
    parser = _resume_parser()
    args = parser.parse_args(argv)
    if args.help:
        _print_help("resume", mode)
        return EXIT_OK
    return _do_resume(_controller(cfg), cfg, console, mode, _parse_count(parser, args.max_iterations))


def cmd_cancel(argv: list[str], cfg: LoopConfig, console: Console, mode: OutputMode) -> int:
    args = _cancel_parser().parse_args(argv)
    if args.help:
        _print_help("cancel", mode)
        return EXIT_OK
    try:
        result = _controller(cfg).cancel()
    except CorruptStateError as exc:
        eprint(f"{PROG}: {exc}")
        console.print("No loop is running from a corrupt state file; nothing to cancel.", markup=False)
        return EXIT_OK
    console.print(cancel_message(result.state, was_active=result.was_active), markup=False)
    return EXIT_OK


def cmd_status(argv: list[str], cfg: LoopConfig, console: Console, mode: OutputMode) -> int:
    args = _status_parser().parse_args(argv)
    if args.help:
        _print_help("status", mode)
        return EXIT_OK
    try:
        state = _controller(cfg).current()
    except CorruptStateError as exc:
        eprint(f"{PROG}: {exc}")
        return EXIT_ERROR

    phase = loop_phase(state)
    if args.json:
        payload: dict[str, object] = {"phase": phase, "state_file": str(cfg.state_path)}
        if state is not None:
            payload.update(state.to_dict())
        json.dump(payload, sys.stdout, indent=2, ensure_ascii=False)
        print()
        return EXIT_OK

    if state is None:
        console.print(f"No Ralph loop in this directory ({_display_path(cfg)}).", markup=False)
        return EXIT_OK

    rows = [
        ("phase", phase),
        ("iteration", state.iteration),
        ("max_iterations", describe_limit(state.max_iterations)),
        ("completion_promise", state.completion_promise or "none"),
        ("started_at", state.started_at),
        ("stop_reason", state.stop_reason or ""),
        ("prompt", preview(state.prompt_text)),
    ]
    if mode == "rich":
        render_table(console, headers=("Field", "Value"), rows=rows, title="Ralph Loop", no_wrap_columns=(0,))
    else:
        for key, value in rows:
            console.print(f"{key}: {value}", markup=False)
    return EXIT_OK


def cmd_interview_done(argv: list[str], cfg: LoopConfig, console: Console, mode: OutputMode) -> int:
    parser = _interview_done_parser()
    args = parser.parse_intermixed_args(argv)
    if args.help:
        _print_help("interview-done", mode)
        return EXIT_OK
    max_iterations = _parse_count(parser, args.max_iterations)
    promise = _check_promise(parser, args.completion_promise)

    if args.prompt_file and args.prompt:
        _usage_error(parser, "pass the spec either as words or with --prompt-file, not both")
    if args.prompt_file == "-":
        prompt = sys.stdin.read()
    elif args.prompt_file:
        path = Path(args.prompt_file)
        try:
            prompt = path.read_text(encoding="utf-8")
        except OSError as exc:
            _usage_error(parser, f"cannot read {path}: {exc.strerror or exc}")
    else:
        prompt = " ".join(args.prompt)

    try:
        state = _controller(cfg).complete_interview(
            prompt.rstrip("\n"),
            completion_promise=promise,
            max_iterations=max_iterations,
        )
    except CorruptStateError as exc:
        eprint(f"{PROG}: {exc}")
        return EXIT_ERROR
    except InterviewStateError as exc:
        eprint(f"{PROG}: {exc}")
        eprint(f"   Start an interview with `{PROG} --ask-me`.")
        return EXIT_ERROR
    except InvalidArgumentError as exc:
        _usage_error(parser, str(exc))

    if state.then_stop:
        console.print(
            f"Spec saved to {_display_path(cfg)}. Review it, then run `{PROG} resume`.",
            markup=False,
        )
    else:
        console.print(
            f"Spec saved. Loop running: max iterations {describe_limit(state.max_iterations)}, "
            f"promise {state.completion_promise}.",
            markup=False,
        )
    return EXIT_OK


def _extract_output_flag(raw: list[str]) -> str | None:
    for idx, item in enumerate(raw):
        if item == "--":
            break
        if item == "--output" and idx + 1 < len(raw):
            return raw[idx + 1]
        if item.startswith("--output="):
            return item.split("=", 1)[1]
    return None


def main(argv: list[str] | None = None) -> None:
    raw = list(argv if argv is not None else sys.argv[1:])

    options = raw[: raw.index("--")] if "--" in raw else raw
    if "--version" in options:
        print(f"{PROG} {__version__}")
        sys.exit(EXIT_OK)

    if raw[:1] == ["hook"]:
        if len(raw) > 1:
            _usage_error(_start_parser(), "hook takes no arguments", _OPTION_WORD_HINTS)
        sys.exit(run_hook(sys.stdin, sys.stdout))

    cfg = load_config()
    if cfg.error:
        eprint(f"{PROG}: {cfg.error}")
        sys.exit(EXIT_ERROR)

    try:
        mode = resolve_output_mode(_extract_output_flag(raw), configured=cfg.output)
    except ValueError as exc:
        eprint(f"{PROG}: {exc}")
        sys.exit(EXIT_ERROR)
    console = make_console(mode)

    if raw and raw[0] in SUBCOMMANDS:
        command, rest = raw[0], raw[1:]
        if command == "resume":
            sys.exit(cmd_resume(rest, cfg, console, mode))
        if command == "cancel":
            sys.exit(cmd_cancel(rest, cfg, console, mode))
        if command == "status":
            sys.exit(cmd_status(rest, cfg, console, mode))
        sys.exit(cmd_interview_done(rest, cfg, console, mode))

    parser = _start_parser()
    args, unknown = parser.parse_known_intermixed_args(raw)
    if unknown:
        _usage_error(parser, "unrecognized arguments: " + " ".join(unknown), _OPTION_WORD_HINTS)
    if args.help:
        _print_help("start", mode)
        sys.exit(EXIT_OK)
    sys.exit(cmd_start(args, parser, cfg, console, mode))


if __name__ == "__main__":
    main()
