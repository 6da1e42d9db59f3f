"""Track one remote task to a terminal outcome.

The loop is an explicit state machine. Each pass checks cancellation and
both budgets, issues one status query, then either terminates or waits
``interval_ms`` on the clock. The wait is the only suspension point and is
interrupted by :meth:`PollSession.cancel`.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

from . import config
from .errors import (
    EmptyOutputError,
    PollCancelledError,
    PollErrorBudgetExhaustedError,
    PollTimeoutError,
    RemoteServiceError,
    TaskFailedError,
)
from .models import RemoteTask, TaskStatus

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Video generation failed"
EMPTY_OUTPUT_MESSAGE = "Task succeeded but returned no output"


class PollState(str, Enum):
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ERROR_BUDGET_EXHAUSTED = "ERROR_BUDGET_EXHAUSTED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not PollState.POLLING


@dataclass(frozen=True)
class PollPolicy:
    interval_ms: int = 3000
    max_duration_ms: int = 15 * 60 * 1000
    max_consecutive_errors: int = 3

    def __post_init__(self):
        if self.interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        if self.max_duration_ms <= 0:
            raise ValueError("max_duration_ms must be positive")
        if self.max_consecutive_errors < 1:
            raise ValueError("max_consecutive_errors must be at least 1")

    @property
    def max_attempts(self) -> int:
        return math.ceil(self.max_duration_ms / self.interval_ms)

    @classmethod
    def from_env(cls) -> "PollPolicy":
        return cls(
            interval_ms=config.POLL_INTERVAL_MS,
            max_duration_ms=config.POLL_MAX_DURATION_MS,
            max_consecutive_errors=config.POLL_MAX_CONSECUTIVE_ERRORS,
        )


class SystemClock:
    def now(self) -> float:
        return time.monotonic()

    def wait(self, seconds: float, cancelled: threading.Event) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""
        return cancelled.wait(seconds)


@dataclass
class PollSession:
    task_id: str
    policy: PollPolicy
    started_at: float = 0.0
    attempts_used: int = 0
    consecutive_errors: int = 0
    state: PollState = PollState.POLLING
    last_task: Optional[RemoteTask] = None
    last_error: Optional[RemoteServiceError] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()


@dataclass(frozen=True)
class TerminalOutcome:
    state: PollState
    task_id: str
    task: Optional[RemoteTask] = None
    error: Optional[str] = None
    permanent: bool = False
    attempts: int = 0
    elapsed: float = 0.0
    remote_error: Optional[RemoteServiceError] = None

    @property
    def ok(self) -> bool:
        return self.state is PollState.SUCCEEDED

    def unwrap(self) -> RemoteTask:
        """Return the succeeded task or raise the error matching this outcome."""
        if self.ok:
            return self.task
        if self.state is PollState.FAILED:
            if self.permanent and self.remote_error is not None:
                raise self.remote_error
            if self.task is not None and self.task.status is TaskStatus.SUCCEEDED:
                raise EmptyOutputError(self.task_id, self.error, self)
            raise TaskFailedError(self.task_id, self.error, self, permanent=self.permanent)
        if self.state is PollState.TIMED_OUT:
            raise PollTimeoutError(self.task_id, self.error, self)
        if self.state is PollState.ERROR_BUDGET_EXHAUSTED:
            raise PollErrorBudgetExhaustedError(self.task_id, self.error, self, self.remote_error)
        raise PollCancelledError(self.task_id, self.error, self)

    def to_dict(self):
        return {
            "state": self.state.value,
            "taskId": self.task_id,
            "task": self.task.to_dict() if self.task else None,
            "error": self.error,
            "permanent": self.permanent,
            "attempts": self.attempts,
            "elapsed": round(self.elapsed, 3),
        }


class TaskPoller:
    """Drive a :class:`PollSession` with ``fetch_status`` until it terminates.

    ``fetch_status(task_id)`` returns a normalized :class:`RemoteTask` or
    raises :class:`RemoteServiceError`. Anything else it raises propagates.
    ``on_update`` is called with every non-terminal record.
    """

    def __init__(self, fetch_status: Callable[[str], RemoteTask], clock=None,
                 on_update: Optional[Callable[[RemoteTask], None]] = None):
        self.fetch_status = fetch_status
        self.clock = clock or SystemClock()
        self.on_update = on_update

    def new_session(self, task_id: str, policy: Optional[PollPolicy] = None) -> PollSession:
        return PollSession(task_id=task_id, policy=policy or PollPolicy(), started_at=self.clock.now())

    def poll_until_terminal(self, task_id: str, policy: Optional[PollPolicy] = None) -> TerminalOutcome:
        return self.run(self.new_session(task_id, policy))

    def _finish(self, session: PollSession, state: PollState, error: Optional[str] = None,
                permanent: bool = False, task: Optional[RemoteTask] = None) -> TerminalOutcome:
        session.state = state
        outcome = TerminalOutcome(
            state=state,
            task_id=session.task_id,
            task=task or session.last_task,
            error=error,
            permanent=permanent,
            attempts=session.attempts_used,
            elapsed=self.clock.now() - session.started_at,
            remote_error=session.last_error if permanent or state is PollState.ERROR_BUDGET_EXHAUSTED else None,
        )
        log = logger.info if state is PollState.SUCCEEDED else logger.warning
        log("[poll] %s finished %s after %d attempt(s)%s", session.task_id, state.value,
            session.attempts_used, f": {error}" if error else "")
        return outcome

    def _monotonic(self, session: PollSession, task: RemoteTask) -> RemoteTask:
        previous = session.last_task
        if previous is not None and task.status.rank < previous.status.rank:
            logger.debug("[poll] %s status regressed %s -> %s, keeping %s", session.task_id,
                         previous.status.value, task.status.value, previous.status.value)
            return replace(task, status=previous.status)
        return task

    def run(self, session: PollSession) -> TerminalOutcome:
        policy = session.policy
        max_attempts = policy.max_attempts

        while True:
            if session.cancel_requested:
                return self._finish(session, PollState.CANCELLED, "Polling cancelled")
            if session.attempts_used >= max_attempts:
                return self._finish(session, PollState.TIMED_OUT, "Task polling timed out")
            if session.consecutive_errors >= policy.max_consecutive_errors:
                return self._finish(session, PollState.ERROR_BUDGET_EXHAUSTED,
                                    "Failed to check generation status")

            try:
                task = self.fetch_status(session.task_id)
            except RemoteServiceError as e:
                if session.cancel_requested:
                    return self._finish(session, PollState.CANCELLED, "Polling cancelled")
                session.last_error = e
                if e.is_permanent:
                    return self._finish(session, PollState.FAILED, e.message, permanent=True)
                session.consecutive_errors += 1
                session.attempts_used += 1
                logger.warning("[poll] %s attempt %d/%d failed (%d/%d consecutive): %s",
                               session.task_id, session.attempts_used, max_attempts,
                               session.consecutive_errors, policy.max_consecutive_errors, e.message)
                if session.consecutive_errors >= policy.max_consecutive_errors:
                    return self._finish(session, PollState.ERROR_BUDGET_EXHAUSTED,
                                        f"Failed to check generation status: {e.message}")
                if session.attempts_used >= max_attempts:
                    return self._finish(session, PollState.TIMED_OUT, "Task polling timed out")
            else:
                if session.cancel_requested:
                    return self._finish(session, PollState.CANCELLED, "Polling cancelled")
                session.consecutive_errors = 0
                task = self._monotonic(session, task)
                session.last_task = task
                session.attempts_used += 1

                if task.status is TaskStatus.SUCCEEDED:
                    if not task.outputs:
                        return self._finish(session, PollState.FAILED, EMPTY_OUTPUT_MESSAGE, task=task)
                    return self._finish(session, PollState.SUCCEEDED, task=task)
                if task.status is TaskStatus.FAILED:
                    return self._finish(session, PollState.FAILED, task.error or GENERIC_FAILURE_MESSAGE,
                                        task=task)

                logger.debug("[poll] %s attempt %d/%d status=%s progress=%s", session.task_id,
                             session.attempts_used, max_attempts, task.status.value, task.progress)
                if self.on_update is not None:
                    self.on_update(task)

            if self.clock.wait(policy.interval_ms / 1000.0, session.cancel_event):
                return self._finish(session, PollState.CANCELLED, "Polling cancelled")
