"""User-facing text for the CLI and the stop hook."""

from __future__ import annotations

from .completion import completion_instruction
from .controller import (
    AWAIT_INTERVIEW,
    AWAIT_REVIEW,
    CONTINUE,
    HALT_CANCELLED,
    HALT_COMPLETE,
    HALT_DRY_RUN,
    HALT_MAX_ITERATIONS,
    Decision,
)
from .state import LoopState

RULE = "=" * 62


def describe_limit(max_iterations: int) -> str:
    return str(max_iterations) if max_iterations > 0 else "unlimited"


def describe_promise(promise: str | None) -> str:
    if promise is None:
        return "none (runs forever)"
    return f"{promise} (ONLY output when TRUE - do not lie!)"


def activation_message(state: LoopState, *, state_file: str) -> str:
    lines = [
        "Ralph loop activated in this session!",
        "",
        f"Iteration: {state.iteration}",
        f"Max iterations: {describe_limit(state.max_iterations)}",
        f"Completion promise: {describe_promise(state.completion_promise)}",
        "",
        "The stop hook is now active. When you try to exit, the SAME PROMPT will be",
        "fed back to you. You'll see your previous work in files, creating a",
        "self-referential loop where you iteratively improve on the same task.",
        "",
        f"To monitor: ralph-loop status   (or: head -12 {state_file})",
        "To stop:    ralph-loop cancel",
    ]
    if state.max_iterations == 0 and state.completion_promise is None:
        lines += [
            "",
            "WARNING: no --max-iterations and no --completion-promise are set.",
            "This loop runs until you cancel it.",
        ]
    return "\n".join(lines)


def promise_banner(promise: str) -> str:
    return "\n".join(
        [
            RULE,
            "CRITICAL - Ralph Loop Completion Promise",
            RULE,
            "",
            "To complete this loop, output this EXACT text:",
            f"  {completion_instruction(promise)}",
            "",
            "STRICT REQUIREMENTS (DO NOT VIOLATE):",
            "  - Use <promise> XML tags EXACTLY as shown above",
            "  - The statement MUST be completely and unequivocally TRUE",
            "  - Do NOT output false statements to exit the loop",
            "",
            "Even if you believe you're stuck, the task is impossible, or you've",
            "been running too long, you MUST NOT output a false promise. The loop",
            "continues until the promise is GENUINELY TRUE.",
            RULE,
        ]
    )


def interview_mode_note(state: LoopState) -> str | None:
    if state.dry_run:
        return "DRY RUN MODE - Interview only, no specs will be written"
    if state.then_stop:
        return "THEN-STOP MODE - Will generate spec but stop for review before starting loop"
    return None


def resume_message(state: LoopState, *, overridden: bool, state_file: str) -> str:
    if overridden:
        head = f"Resuming with --max-iterations {state.max_iterations} (overriding spec)"
    else:
        head = "Resuming from existing spec!"
    return "\n".join(
        [
            head,
            "",
            f"Starting Ralph loop with the spec from {state_file}",
            "",
            state.prompt_text,
        ]
    )


def review_instructions(state: LoopState, *, state_file: str) -> str:
    return "\n".join(
        [
            f"Spec written to {state_file} and waiting for review.",
            "Edit the prompt below the --- header if needed, then start the loop with:",
            "  ralph-loop resume",
            "  ralph-loop resume --max-iterations <n>   (override the limit)",
        ]
    )


def continue_system_message(state: LoopState) -> str:
    if state.completion_promise is not None:
        tail = (
            f"To stop: output {completion_instruction(state.completion_promise)} "
            "(ONLY when statement is TRUE - do not lie to exit!)"
        )
    else:
        tail = "No completion promise set - loop runs until max iterations or cancel"
    limit = f"/{state.max_iterations}" if state.max_iterations > 0 else ""
    return f"Ralph iteration {state.iteration}{limit} | {tail}"


def stop_message(decision: Decision, state: LoopState | None, *, state_file: str) -> str | None:
    if state is None:
        return None
    if decision == CONTINUE:
        return continue_system_message(state)
    if decision == HALT_COMPLETE:
        assert state.completion_promise is not None
        return (
            f"Ralph loop: Detected {completion_instruction(state.completion_promise)} "
            f"after {state.iteration} iteration(s)."
        )
    if decision == HALT_MAX_ITERATIONS:
        return f"Ralph loop: Max iterations ({state.max_iterations}) reached."
    if decision == HALT_CANCELLED:
        return f"Ralph loop: Cancelled at iteration {state.iteration}."
    if decision == HALT_DRY_RUN:
        return "Ralph loop: Dry run finished. No loop was started."
    if decision == AWAIT_REVIEW:
        return review_instructions(state, state_file=state_file)
    if decision == AWAIT_INTERVIEW:
        return "Ralph loop: Waiting for the interview to finish (run `ralph-loop interview-done`)."
    return None


def cancel_message(state: LoopState | None, *, was_active: bool) -> str:
    if state is None:
        return "No active Ralph loop found."
    if not was_active:
        return f"No active Ralph loop (last loop stopped at iteration {state.iteration})."
    return f"Cancelled Ralph loop (was at iteration {state.iteration})."
