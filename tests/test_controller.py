from __future__ import annotations

import pytest

from ralphloop.controller import (
    ASK_ME_PLACEHOLDER,
    AWAIT_INTERVIEW,
    AWAIT_REVIEW,
    CONTINUE,
    HALT_CANCELLED,
    HALT_COMPLETE,
    HALT_DRY_RUN,
    HALT_MAX_ITERATIONS,
    NO_LOOP,
    LoopController,
    cancel_state,
    decide_exit,
    is_resumable,
    loop_phase,
    resume_state,
    start_state,
)
from ralphloop.errors import (
    InterviewStateError,
    InvalidArgumentError,
    LoopActiveError,
    NotResumableError,
)
from ralphloop.events import LoopEvent
from ralphloop.state import MemoryStateStore


def _controller(store: MemoryStateStore | None = None) -> tuple[LoopController, list[LoopEvent]]:
    events: list[LoopEvent] = []
    controller = LoopController(
        store or MemoryStateStore(),
        emit=events.append,
        now=lambda: "2026-01-13T09:30:00Z",
    )
    return controller, events


class TestStart:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {},
            {"max_iterations": 5},
            {"completion_promise": "DONE"},
            {"then_stop": True},
            {"ask_me": True, "dry_run": True},
        ],
    )
    def test_valid_start_is_active_at_iteration_one(self, kwargs: dict) -> None:
        controller, _ = _controller()
        state = controller.start("Build a todo API", **kwargs)
        assert state.iteration == 1
        assert state.active is True
        assert state.interview_complete is False
        assert controller.current() == state

    def test_empty_prompt_without_ask_me_is_invalid(self) -> None:
        controller, _ = _controller()
        with pytest.raises(InvalidArgumentError, match="no prompt"):
            controller.start("")
        assert controller.store.exists() is False

    def test_ask_me_uses_placeholder_prompt(self) -> None:
        controller, _ = _controller()
        state = controller.start("", ask_me=True)
        assert state.prompt_text == ASK_ME_PLACEHOLDER
        assert loop_phase(state) == "awaiting_interview"

    @pytest.mark.parametrize("bad", [-1, True, "3"])
    def test_rejects_bad_max_iterations(self, bad: object) -> None:
        with pytest.raises(InvalidArgumentError):
            start_state("x", max_iterations=bad, started_at="t")  # type: ignore[arg-type]

    def test_rejects_empty_promise(self) -> None:
        with pytest.raises(InvalidArgumentError, match="cannot be empty"):
            start_state("x", completion_promise="", started_at="t")

    def test_refuses_to_clobber_active_loop(self) -> None:
        controller, _ = _controller()
        first = controller.start("first task")
        with pytest.raises(LoopActiveError):
            controller.start("second task")
        assert controller.current() == first

    def test_force_replaces_active_loop(self) -> None:
        controller, _ = _controller()
        controller.start("first task")
        state = controller.start("second task", force=True)
        assert controller.current() == state

    def test_overwrites_inactive_loop(self) -> None:
        controller, _ = _controller()
        controller.start("first task")
        controller.cancel()
        state = controller.start("second task")
        assert state.prompt_text == "second task"
        assert state.stop_reason is None

    def test_overwrites_corrupt_record(self) -> None:
        store = MemoryStateStore()
        store.text = "not a state file"
        controller, _ = _controller(store)
        state = controller.start("fresh")
        assert controller.current() == state

    def test_emits_start_event(self) -> None:
        controller, events = _controller()
        controller.start("x", max_iterations=3)
        assert [e.type for e in events] == ["loop.start"]
        assert events[0].iteration == 1
        assert events[0].payload["max_iterations"] == 3


class TestOnExitAttempt:
    def test_scenario_halts_at_max_iterations(self) -> None:
        controller, _ = _controller()
        controller.start("x", max_iterations=2, completion_promise="OK")

        first = controller.on_exit_attempt("still working")
        assert first.decision == CONTINUE
        assert first.state is not None and first.state.iteration == 2
        assert first.refeed_prompt == "x"
        assert first.blocks_exit is True

        second = controller.on_exit_attempt("still working")
        assert second.decision == HALT_MAX_ITERATIONS
        assert second.state is not None
        assert second.state.iteration == 2
        assert second.state.active is False
        assert second.state.stop_reason == "max_iterations"
        assert second.blocks_exit is False
        assert controller.current() == second.state

    def test_scenario_completion_wins_over_limit(self) -> None:
        controller, _ = _controller()
        controller.start("x", max_iterations=2, completion_promise="OK")

        result = controller.on_exit_attempt("<promise>OK</promise>")

        assert result.decision == HALT_COMPLETE
        assert result.state is not None
        assert result.state.active is False
        assert result.state.iteration == 1
        assert result.state.stop_reason == "completed"

    def test_completion_on_final_iteration_is_complete(self, make_state) -> None:
        state = make_state(iteration=3, max_iterations=3, completion_promise="OK")
        _, decision = decide_exit(state, "done <promise>OK</promise>")
        assert decision == HALT_COMPLETE

    @pytest.mark.parametrize("limit", [1, 2, 5])
    def test_limit_n_allows_exactly_n_minus_one_continues(self, limit: int) -> None:
        controller, _ = _controller()
        controller.start("x", max_iterations=limit)
        decisions = [controller.on_exit_attempt("").decision for _ in range(limit)]
        assert decisions == [CONTINUE] * (limit - 1) + [HALT_MAX_ITERATIONS]
        state = controller.current()
        assert state is not None and state.iteration == limit

    def test_unlimited_never_halts_on_iterations(self, make_state) -> None:
        state = make_state(max_iterations=0)
        for _ in range(50):
            state, decision = decide_exit(state, "still working")
            assert decision == CONTINUE
        assert state is not None and state.iteration == 51

    def test_whitespace_variant_does_not_complete(self) -> None:
        controller, _ = _controller()
        controller.start("x", completion_promise="DONE")
        assert controller.on_exit_attempt("<promise> DONE </promise>").decision == CONTINUE

    def test_malformed_assertion_continues(self) -> None:
        controller, _ = _controller()
        controller.start("x", completion_promise="DONE")
        assert controller.on_exit_attempt("<promise>DONE").decision == CONTINUE

    def test_no_promise_never_completes(self) -> None:
        controller, _ = _controller()
        controller.start("x")
        assert controller.on_exit_attempt("<promise>DONE</promise>").decision == CONTINUE

    def test_no_state_is_no_loop(self) -> None:
        controller, events = _controller()
        result = controller.on_exit_attempt("anything")
        assert result.decision == NO_LOOP
        assert result.state is None
        assert events == []

    def test_inactive_state_is_untouched(self, make_state) -> None:
        store = MemoryStateStore(make_state(active=False, stop_reason="completed"))
        controller, _ = _controller(store)
        result = controller.on_exit_attempt("")
        assert result.decision == NO_LOOP
        assert store.saves == 0

    def test_cancelled_state_reports_cancel_without_writing(self, make_state) -> None:
        store = MemoryStateStore(make_state(active=False, iteration=4, stop_reason="cancelled"))
        controller, events = _controller(store)

        result = controller.on_exit_attempt("<promise>DONE</promise>")

        assert result.decision == HALT_CANCELLED
        assert result.halted is True
        assert result.blocks_exit is False
        assert result.state is not None and result.state.iteration == 4
        assert store.saves == 0
        assert events == []

    def test_dry_run_halts_on_first_exit(self) -> None:
        controller, _ = _controller()
        controller.start("", ask_me=True, dry_run=True)
        result = controller.on_exit_attempt("That was fun!")
        assert result.decision == HALT_DRY_RUN
        assert result.state is not None and result.state.stop_reason == "dry_run"

    def test_interview_in_progress_allows_exit_without_counting(self) -> None:
        store = MemoryStateStore()
        controller, _ = _controller(store)
        controller.start("", ask_me=True)
        saves = store.saves
        result = controller.on_exit_attempt("What does your computer thing do?")
        assert result.decision == AWAIT_INTERVIEW
        assert result.state is not None and result.state.iteration == 1
        assert store.saves == saves

    def test_then_stop_awaits_review_after_interview(self) -> None:
        controller, events = _controller()
        controller.start("", ask_me=True, then_stop=True)
        controller.complete_interview("## Project: Todo")
        result = controller.on_exit_attempt("Bye-bye!")
        assert result.decision == AWAIT_REVIEW
        assert result.state is not None
        assert result.state.active is True
        assert result.state.iteration == 1
        assert events[-1].type == "loop.await"

    def test_then_stop_without_interview_runs_normally(self) -> None:
        controller, _ = _controller()
        controller.start("x", then_stop=True)
        assert controller.on_exit_attempt("").decision == CONTINUE

    def test_emits_continue_and_halt_events(self) -> None:
        controller, events = _controller()
        controller.start("x", max_iterations=2)
        controller.on_exit_attempt("")
        controller.on_exit_attempt("")
        assert [e.type for e in events] == ["loop.start", "loop.continue", "loop.halt"]
        assert events[-1].payload == {"decision": HALT_MAX_ITERATIONS}


class TestResume:
    def _awaiting_review(self) -> LoopController:
        controller, _ = _controller()
        controller.start("", ask_me=True, then_stop=True, max_iterations=10)
        controller.complete_interview("## Project: Todo", max_iterations=25)
        return controller

    def test_resume_clears_then_stop(self) -> None:
        controller = self._awaiting_review()
        state = controller.resume()
        assert state.then_stop is False
        assert state.active is True
        assert state.max_iterations == 25
        assert loop_phase(state) == "active"
        assert controller.on_exit_attempt("").decision == CONTINUE

    def test_resume_overrides_max_iterations(self) -> None:
        controller = self._awaiting_review()
        assert controller.resume(max_iterations=3).max_iterations == 3

    def test_resume_override_zero_means_unlimited(self) -> None:
        controller = self._awaiting_review()
        assert controller.resume(max_iterations=0).max_iterations == 0

    def test_resume_twice_is_rejected(self) -> None:
        controller = self._awaiting_review()
        controller.resume()
        with pytest.raises(NotResumableError):
            controller.resume()

    def test_rejected_without_then_stop_even_after_interview(self, make_state) -> None:
        state = make_state(ask_me=True, interview_complete=True, then_stop=False)
        with pytest.raises(NotResumableError, match="--then-stop"):
            resume_state(state)

    def test_rejected_before_interview_completes(self, make_state) -> None:
        with pytest.raises(NotResumableError, match="interview"):
            resume_state(make_state(ask_me=True, then_stop=True))

    def test_rejected_without_state(self) -> None:
        controller, _ = _controller()
        with pytest.raises(NotResumableError):
            controller.resume()

    def test_cancelled_review_stays_halted(self) -> None:
        controller = self._awaiting_review()
        controller.cancel()

        with pytest.raises(NotResumableError, match=r"already stopped \(cancelled\)"):
            controller.resume()

        state = controller.current()
        assert state is not None
        assert state.active is False
        assert state.stop_reason == "cancelled"
        assert loop_phase(state) == "halted"

    def test_halted_loop_is_not_resumable(self, make_state) -> None:
        state = make_state(
            active=False,
            ask_me=True,
            then_stop=True,
            interview_complete=True,
            stop_reason="max_iterations",
        )
        assert is_resumable(state) is False
        with pytest.raises(NotResumableError, match="max_iterations"):
            resume_state(state)


class TestCancel:
    def test_cancel_twice_is_idempotent(self) -> None:
        controller, events = _controller()
        controller.start("x")

        first = controller.cancel()
        second = controller.cancel()

        assert first.was_active is True
        assert first.decision == HALT_CANCELLED
        assert first.state is not None and first.state.active is False
        assert second.was_active is False
        assert second.state is not None and second.state.active is False
        assert [e.type for e in events] == ["loop.start", "loop.cancel"]

    def test_cancel_without_state(self) -> None:
        controller, _ = _controller()
        result = controller.cancel()
        assert result.state is None
        assert result.decision == NO_LOOP

    def test_cancel_state_keeps_record_inspectable(self, make_state) -> None:
        state = make_state(iteration=4)
        cancelled = cancel_state(state)
        assert cancelled.iteration == 4
        assert cancelled.prompt_text == state.prompt_text
        assert cancelled.stop_reason == "cancelled"
        assert cancel_state(cancelled) is cancelled

    def test_cancel_between_read_and_write_is_last_writer_wins(self) -> None:
        store = MemoryStateStore()
        controller, _ = _controller(store)
        controller.start("x")

        stale = store.load()
        controller.cancel()
        next_state, _ = decide_exit(stale, "")
        assert next_state is not None
        store.save(next_state)

        state = controller.current()
        assert state is not None and state.active is True
        assert controller.cancel().was_active is True
        assert controller.on_exit_attempt("").decision == HALT_CANCELLED


class TestCompleteInterview:
    def test_records_prompt_and_default_promise(self) -> None:
        controller, events = _controller()
        controller.start("", ask_me=True)
        state = controller.complete_interview("## Project: Todo\n\n- [ ] API")
        assert state.interview_complete is True
        assert state.prompt_text == "## Project: Todo\n\n- [ ] API"
        assert state.completion_promise == "COMPLETE"
        assert loop_phase(state) == "active"
        assert events[-1].type == "loop.interview_complete"

    def test_keeps_existing_promise(self) -> None:
        controller, _ = _controller()
        controller.start("", ask_me=True, completion_promise="SHIPPED")
        assert controller.complete_interview("spec").completion_promise == "SHIPPED"

    def test_rejected_outside_interview(self) -> None:
        controller, _ = _controller()
        controller.start("x")
        with pytest.raises(InterviewStateError):
            controller.complete_interview("spec")

    def test_rejected_for_dry_run(self) -> None:
        controller, _ = _controller()
        controller.start("", ask_me=True, dry_run=True)
        with pytest.raises(InterviewStateError, match="dry run"):
            controller.complete_interview("spec")

    def test_rejects_blank_prompt(self) -> None:
        controller, _ = _controller()
        controller.start("", ask_me=True)
        with pytest.raises(InvalidArgumentError):
            controller.complete_interview("   ")


def test_loop_phase_covers_lifecycle(make_state) -> None:
    assert loop_phase(None) == "uninitialized"
    assert loop_phase(make_state(ask_me=True)) == "awaiting_interview"
    assert loop_phase(make_state(ask_me=True, interview_complete=True)) == "active"
    assert (
        loop_phase(make_state(ask_me=True, interview_complete=True, then_stop=True))
        == "awaiting_review"
    )
    assert loop_phase(make_state(active=False)) == "halted"
