"""Error taxonomy shared by the submitter, poller, canceller and HTTP layer."""
from typing import Optional

PERMANENT_HTTP_STATUSES = frozenset({400, 401, 403, 404})


class V2VError(Exception):
    """Base class; every error carries a human-readable ``message``."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(V2VError):
    """Bad caller input. Never retried."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.reason = message


class RemoteServiceError(V2VError):
    """Non-2xx or malformed response from the remote generation service."""

    def __init__(self, http_status: int, code: str, message: str):
        super().__init__(message)
        self.http_status = http_status
        self.code = code

    @property
    def is_permanent(self) -> bool:
        return self.http_status in PERMANENT_HTTP_STATUSES

    @property
    def is_service_error(self) -> bool:
        return self.http_status >= 500

    @property
    def kind(self) -> str:
        return "service" if self.is_service_error else "request"

    def __repr__(self):
        return f"RemoteServiceError(http_status={self.http_status}, code={self.code!r}, message={self.message!r})"


class PollError(V2VError):
    """A poll session ended without a usable result."""

    def __init__(self, task_id: str, message: str, outcome=None):
        super().__init__(message)
        self.task_id = task_id
        self.outcome = outcome


class TaskFailedError(PollError):
    def __init__(self, task_id: str, message: str, outcome=None, permanent: bool = False):
        super().__init__(task_id, message, outcome)
        self.permanent = permanent


class EmptyOutputError(TaskFailedError):
    """The remote task reported success but produced no output URL."""


class PollTimeoutError(PollError):
    pass


class PollErrorBudgetExhaustedError(PollError):
    def __init__(self, task_id: str, message: str, outcome=None,
                 last_error: Optional[RemoteServiceError] = None):
        super().__init__(task_id, message, outcome)
        self.last_error = last_error


class PollCancelledError(PollError):
    pass
