"""Loop state machine.

Each function here is invoked once per external event (a start command, an
agent exit attempt, a resume or cancel command) in a fresh process, so the
pure transition functions take the persisted record and return the next one.
``LoopController`` wraps them with load, save and event emission.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Literal

from .completion import output_fulfils
from .errors import (
    CorruptStateError,
    InterviewStateError,
    InvalidArgumentError,
    LoopActiveError,
    NotResumableError,
)
from .events import (
    LOOP_AWAIT,
    LOOP_CANCEL,
    LOOP_CONTINUE,
    LOOP_HALT,
    LOOP_INTERVIEW_COMPLETE,
    LOOP_RESUME,
    LOOP_START,
    EventSink,
    LoopEvent,
)
from .state import LoopState, StateStore
from .util import utc_now_iso

ASK_ME_PLACEHOLDER = "(Ralph will ask about the project)"
DEFAULT_INTERVIEW_PROMISE = "COMPLETE"

Phase = Literal[
    "uninitialized",
    "awaiting_interview",
    "awaiting_review",
    "active",
    "halted",
]

Decision = Literal[
    "continue",
    "halt_complete",
    "halt_max_iterations",
    "halt_cancelled",
    "halt_dry_run",
    "await_interview",
    "await_review",
    "no_loop",
]

CONTINUE: Decision = "continue"
HALT_COMPLETE: Decision = "halt_complete"
HALT_MAX_ITERATIONS: Decision = "halt_max_iterations"
HALT_CANCELLED: Decision = "halt_cancelled"
HALT_DRY_RUN: Decision = "halt_dry_run"
AWAIT_INTERVIEW: Decision = "await_interview"
AWAIT_REVIEW: Decision = "await_review"
NO_LOOP: Decision = "no_loop"

_STOP_REASON_BY_DECISION = {
    HALT_COMPLETE: "completed",
    HALT_MAX_ITERATIONS: "max_iterations",
    HALT_CANCELLED: "cancelled",
    HALT_DRY_RUN: "dry_run",
}

Clock = Callable[[], str]


@dataclass(frozen=True)
class ExitDecision:
    decision: Decision
    state: LoopState | None

    @property
    def blocks_exit(self) -> bool:
        return self.decision == CONTINUE

    @property
    def halted(self) -> bool:
        return self.decision in _STOP_REASON_BY_DECISION

    @property
    def refeed_prompt(self) -> str | None:
        if self.decision != CONTINUE or self.state is None:
            return None
        return self.state.prompt_text


@dataclass(frozen=True)
class CancelResult:
    state: LoopState | None
    was_active: bool

    @property
    def decision(self) -> Decision:
        return HALT_CANCELLED if self.state is not None else NO_LOOP


# ---------------------------------------------------------------------------
# Pure transitions
# ---------------------------------------------------------------------------


def loop_phase(state: LoopState | None) -> Phase:
    if state is None:
        return "uninitialized"
    if not state.active:
        return "halted"
    if state.ask_me and not state.interview_complete:
        return "awaiting_interview"
    if state.then_stop and state.interview_complete:
        return "awaiting_review"
    return "active"


def is_resumable(state: LoopState | None) -> bool:
    return (
        state is not None
        and state.active
        and state.then_stop
        and state.interview_complete
    )


def start_state(
    prompt_text: str,
    *,
    max_iterations: int = 0,
    completion_promise: str | None = None,
    ask_me: bool = False,
    dry_run: bool = False,
    then_stop: bool = False,
    started_at: str,
) -> LoopState:
    if isinstance(max_iterations, bool) or not isinstance(max_iterations, int):
        raise InvalidArgumentError(f"max_iterations must be an integer, got {max_iterations!r}")
    if max_iterations < 0:
        raise InvalidArgumentError(f"max_iterations must be >= 0, got {max_iterations}")
    if completion_promise is not None and completion_promise == "":
        raise InvalidArgumentError("completion promise cannot be empty")
    if not prompt_text:
        if not ask_me:
            raise InvalidArgumentError("no prompt provided")
        prompt_text = ASK_ME_PLACEHOLDER
    return LoopState(
        active=True,
        iteration=1,
        max_iterations=max_iterations,
        completion_promise=completion_promise,
        started_at=started_at,
        prompt_text=prompt_text,
        ask_me=ask_me,
        dry_run=dry_run,
        then_stop=then_stop,
        interview_complete=False,
    )


def _halt(state: LoopState, decision: Decision) -> LoopState:
    return replace(state, active=False, stop_reason=_STOP_REASON_BY_DECISION[decision])


def decide_exit(state: LoopState | None, latest_output: str | None) -> tuple[LoopState | None, Decision]:
    """Return the next state and the decision for one exit attempt.

    The returned state is identical to the input for non-mutating decisions.
    """
    if state is None:
        return state, NO_LOOP
    if not state.active:
        if state.stop_reason == "cancelled":
            return state, HALT_CANCELLED
        return state, NO_LOOP
    if state.dry_run:
        return _halt(state, HALT_DRY_RUN), HALT_DRY_RUN

    phase = loop_phase(state)
    if phase == "awaiting_interview":
        return state, AWAIT_INTERVIEW
    if phase == "awaiting_review":
        return state, AWAIT_REVIEW

    if state.completion_promise is not None and output_fulfils(
        state.completion_promise, latest_output
    ):
        return _halt(state, HALT_COMPLETE), HALT_COMPLETE
    if state.max_iterations > 0 and state.iteration >= state.max_iterations:
        return _halt(state, HALT_MAX_ITERATIONS), HALT_MAX_ITERATIONS
    return replace(state, iteration=state.iteration + 1), CONTINUE


def resume_state(state: LoopState | None, *, max_iterations: int | None = None) -> LoopState:
    if state is None:
        raise NotResumableError("no loop state to resume")
    if not state.active:
        reason = state.stop_reason or "halted"
        raise NotResumableError(f"loop has already stopped ({reason}); start a new loop instead")
    if not is_resumable(state):
        if not state.then_stop:
            raise NotResumableError("loop was not started with --then-stop")
        raise NotResumableError("interview has not completed yet")
    if max_iterations is not None and max_iterations < 0:
        raise InvalidArgumentError(f"max_iterations must be >= 0, got {max_iterations}")
    resumed = replace(state, then_stop=False)
    if max_iterations is not None:
        resumed = replace(resumed, max_iterations=max_iterations)
    return resumed


def cancel_state(state: LoopState) -> LoopState:
    if not state.active:
        return state
    return _halt(state, HALT_CANCELLED)


def complete_interview_state(
    state: LoopState | None,
    prompt_text: str,
    *,
    completion_promise: str | None = None,
    max_iterations: int | None = None,
) -> LoopState:
    if loop_phase(state) != "awaiting_interview":
        raise InterviewStateError("no interview is in progress")
    assert state is not None
    if state.dry_run:
        raise InterviewStateError("dry runs do not record interview results")
    if not prompt_text.strip():
        raise InvalidArgumentError("generated prompt cannot be empty")
    if completion_promise == "":
        raise InvalidArgumentError("completion promise cannot be empty")
    if max_iterations is not None and max_iterations < 0:
        raise InvalidArgumentError(f"max_iterations must be >= 0, got {max_iterations}")

    promise = completion_promise or state.completion_promise or DEFAULT_INTERVIEW_PROMISE
    return replace(
        state,
        prompt_text=prompt_text,
        interview_complete=True,
        completion_promise=promise,
        max_iterations=state.max_iterations if max_iterations is None else max_iterations,
    )


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class LoopController:
    def __init__(
        self,
        store: StateStore,
        *,
        emit: EventSink | None = None,
        now: Clock = utc_now_iso,
    ) -> None:
        self.store = store
        self.emit = emit
        self.now = now

    def _emit(self, kind: str, state: LoopState | None, **payload: object) -> None:
        if self.emit is None:
            return
        self.emit(
            LoopEvent(
                type=kind,
                timestamp=self.now(),
                iteration=state.iteration if state is not None else None,
                payload=dict(payload),
            )
        )

    def current(self) -> LoopState | None:
        return self.store.load()

    def start(
        self,
        prompt_text: str,
        *,
        max_iterations: int = 0,
        completion_promise: str | None = None,
        ask_me: bool = False,
        dry_run: bool = False,
        then_stop: bool = False,
        force: bool = False,
    ) -> LoopState:
        state = start_state(
            prompt_text,
            max_iterations=max_iterations,
            completion_promise=completion_promise,
            ask_me=ask_me,
            dry_run=dry_run,
            then_stop=then_stop,
            started_at=self.now(),
        )
        if not force:
            try:
                existing = self.store.load()
            except CorruptStateError:
                # Corrupt records are overwritten.
                existing = None
            if existing is not None and existing.active:
                raise LoopActiveError(
                    f"a loop is already active (iteration {existing.iteration})"
                )
        self.store.save(state)
        self._emit(
            LOOP_START,
            state,
            max_iterations=state.max_iterations,
            completion_promise=state.completion_promise,
            ask_me=state.ask_me,
            dry_run=state.dry_run,
            then_stop=state.then_stop,
        )
        return state

    def on_exit_attempt(self, latest_output: str | None) -> ExitDecision:
        state = self.store.load()
        next_state, decision = decide_exit(state, latest_output)
        if decision in (NO_LOOP, HALT_CANCELLED):
            # Cancelled records are reported as-is; the cancel itself was already logged.
            return ExitDecision(decision=decision, state=next_state)

        if next_state != state:
            assert next_state is not None
            self.store.save(next_state)

        if decision == CONTINUE:
            self._emit(LOOP_CONTINUE, next_state)
        elif decision in (AWAIT_INTERVIEW, AWAIT_REVIEW):
            self._emit(LOOP_AWAIT, next_state, decision=decision)
        else:
            self._emit(LOOP_HALT, next_state, decision=decision)
        return ExitDecision(decision=decision, state=next_state)

    def resume(self, *, max_iterations: int | None = None) -> LoopState:
        state = resume_state(self.store.load(), max_iterations=max_iterations)
        self.store.save(state)
        self._emit(
            LOOP_RESUME,
            state,
            max_iterations=state.max_iterations,
            overridden=max_iterations is not None,
        )
        return state

    def cancel(self) -> CancelResult:
        state = self.store.load()
        if state is None:
            return CancelResult(state=None, was_active=False)
        if not state.active:
            return CancelResult(state=state, was_active=False)
        cancelled = cancel_state(state)
        self.store.save(cancelled)
        self._emit(LOOP_CANCEL, cancelled)
        return CancelResult(state=cancelled, was_active=True)

    def complete_interview(
        self,
        prompt_text: str,
        *,
        completion_promise: str | None = None,
        max_iterations: int | None = None,
    ) -> LoopState:
        state = complete_interview_state(
            self.store.load(),
            prompt_text,
            completion_promise=completion_promise,
            max_iterations=max_iterations,
        )
        self.store.save(state)
        self._emit(
            LOOP_INTERVIEW_COMPLETE,
            state,
            then_stop=state.then_stop,
            max_iterations=state.max_iterations,
        )
        return state
