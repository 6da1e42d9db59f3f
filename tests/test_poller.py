"""
Tests for the poll state machine, driven by a virtual clock.
"""
import pytest

from v2v.errors import (
    EmptyOutputError,
    PollCancelledError,
    PollErrorBudgetExhaustedError,
    PollTimeoutError,
    RemoteServiceError,
    TaskFailedError,
)
from v2v.models import TaskStatus
from v2v.poller import PollPolicy, PollState, TaskPoller

from fakes import ScriptedStatus, make_task


def transient():
    return RemoteServiceError(503, "API_ERROR", "upstream unavailable")


class TestPollPolicy:

    def test_defaults(self):
        policy = PollPolicy()
        assert policy.interval_ms == 3000
        assert policy.max_attempts == 300
        assert policy.max_consecutive_errors == 3

    def test_max_attempts_rounds_up(self):
        assert PollPolicy(interval_ms=3000, max_duration_ms=10000).max_attempts == 4

    @pytest.mark.parametrize("kwargs", [
        {"interval_ms": 0},
        {"max_duration_ms": -1},
        {"max_consecutive_errors": 0},
    ])
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            PollPolicy(**kwargs)


class TestTerminalStates:

    def test_running_running_failed(self, clock):
        fetch = ScriptedStatus(
            make_task("RUNNING"),
            make_task("RUNNING"),
            make_task("FAILED", error="Content moderation rejected the prompt"),
        )
        outcome = TaskPoller(fetch, clock=clock).poll_until_terminal("task-1")

        assert outcome.state is PollState.FAILED
        assert outcome.error == "Content moderation rejected the prompt"
        assert not outcome.permanent
        assert len(fetch.calls) == 3
        assert clock.waits == [3.0, 3.0]
        with pytest.raises(TaskFailedError):
            outcome.unwrap()

    def test_failed_without_reason_gets_generic_message(self, clock):
        outcome = TaskPoller(ScriptedStatus(make_task("FAILED")), clock=clock).poll_until_terminal("task-1")
        assert outcome.error == "Video generation failed"

    def test_success_returns_record(self, clock):
        done = make_task("SUCCEEDED", outputs=["https://cdn.test/out.mp4"])
        fetch = ScriptedStatus(make_task("QUEUED"), make_task("RUNNING", progress=50), done)
        outcome = TaskPoller(fetch, clock=clock).poll_until_terminal("task-1")

        assert outcome.ok
        assert outcome.unwrap() is done
        assert outcome.attempts == 3
        assert outcome.elapsed == 6.0

    def test_success_without_output_is_an_error(self, clock):
        outcome = TaskPoller(ScriptedStatus(make_task("SUCCEEDED")), clock=clock).poll_until_terminal("task-1")
        assert outcome.state is PollState.FAILED
        assert outcome.task.status is TaskStatus.SUCCEEDED
        with pytest.raises(EmptyOutputError):
            outcome.unwrap()

    def test_times_out_within_attempt_budget(self, clock):
        fetch = ScriptedStatus(make_task("RUNNING"))
        policy = PollPolicy(interval_ms=1000, max_duration_ms=5000)
        outcome = TaskPoller(fetch, clock=clock).poll_until_terminal("task-1", policy)

        assert outcome.state is PollState.TIMED_OUT
        assert len(fetch.calls) == policy.max_attempts == 5
        with pytest.raises(PollTimeoutError):
            outcome.unwrap()

    def test_status_never_regresses(self, clock):
        seen = []
        fetch = ScriptedStatus(make_task("RUNNING"), make_task("QUEUED"),
                               make_task("SUCCEEDED", outputs=["https://x"]))
        TaskPoller(fetch, clock=clock, on_update=seen.append).poll_until_terminal("task-1")
        assert [t.status for t in seen] == [TaskStatus.RUNNING, TaskStatus.RUNNING]


class TestErrorBudget:

    def test_three_transient_errors_stop_without_a_fourth_request(self, clock):
        fetch = ScriptedStatus(transient(), transient(), transient(), make_task("RUNNING"))
        outcome = TaskPoller(fetch, clock=clock).poll_until_terminal("task-1")

        assert outcome.state is PollState.ERROR_BUDGET_EXHAUSTED
        assert len(fetch.calls) == 3
        with pytest.raises(PollErrorBudgetExhaustedError) as exc_info:
            outcome.unwrap()
        assert exc_info.value.last_error.http_status == 503

    def test_success_resets_consecutive_errors_but_not_attempts(self, clock):
        fetch = ScriptedStatus(*[transient() if i % 2 == 0 else make_task("RUNNING") for i in range(20)])
        policy = PollPolicy(interval_ms=1000, max_duration_ms=8000, max_consecutive_errors=2)
        outcome = TaskPoller(fetch, clock=clock).poll_until_terminal("task-1", policy)

        assert outcome.state is PollState.TIMED_OUT
        assert len(fetch.calls) == 8

    def test_attempt_budget_runs_out_on_a_transient_error(self, clock):
        fetch = ScriptedStatus(make_task("RUNNING"), transient(), make_task("RUNNING"))
        policy = PollPolicy(interval_ms=1000, max_duration_ms=2000, max_consecutive_errors=3)
        outcome = TaskPoller(fetch, clock=clock).poll_until_terminal("task-1", policy)

        assert outcome.state is PollState.TIMED_OUT
        assert len(fetch.calls) == 2
        assert clock.waits == [1.0]

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_permanent_error_fails_fast(self, clock, status):
        gone = RemoteServiceError(status, "API_ERROR", "Task not found")
        fetch = ScriptedStatus(make_task("RUNNING"), gone, make_task("RUNNING"))
        outcome = TaskPoller(fetch, clock=clock).poll_until_terminal("task-1")

        assert outcome.state is PollState.FAILED
        assert outcome.permanent
        assert outcome.error == "Task not found"
        assert len(fetch.calls) == 2
        with pytest.raises(RemoteServiceError) as exc_info:
            outcome.unwrap()
        assert exc_info.value is gone

    def test_unexpected_exceptions_propagate(self, clock):
        fetch = ScriptedStatus(KeyError("bug"))
        with pytest.raises(KeyError):
            TaskPoller(fetch, clock=clock).poll_until_terminal("task-1")


class TestCancellation:

    def test_cancel_during_wait_skips_next_request(self, clock):
        fetch = ScriptedStatus(make_task("RUNNING"))
        poller = TaskPoller(fetch, clock=clock)
        session = poller.new_session("task-1")
        clock.on_wait = lambda n: session.cancel() if n == 2 else None

        outcome = poller.run(session)

        assert outcome.state is PollState.CANCELLED
        assert len(fetch.calls) == 2
        with pytest.raises(PollCancelledError):
            outcome.unwrap()

    def test_cancel_before_start_issues_no_request(self, clock):
        fetch = ScriptedStatus(make_task("RUNNING"))
        poller = TaskPoller(fetch, clock=clock)
        session = poller.new_session("task-1")
        session.cancel()

        assert poller.run(session).state is PollState.CANCELLED
        assert fetch.calls == []

    def test_result_arriving_after_cancel_is_discarded(self, clock):
        holder = {}

        def respond():
            holder["session"].cancel()
            return make_task("SUCCEEDED", outputs=["https://x"])

        poller = TaskPoller(ScriptedStatus(respond), clock=clock)
        holder["session"] = poller.new_session("task-1")
        outcome = poller.run(holder["session"])

        assert outcome.state is PollState.CANCELLED
        assert outcome.task is None
