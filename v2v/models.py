from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TaskStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)

    @property
    def rank(self) -> int:
        # Succeeded and Failed share the terminal rank
        return {TaskStatus.QUEUED: 0, TaskStatus.RUNNING: 1}.get(self, 2)


@dataclass(frozen=True)
class RemoteTask:
    """Canonical view of one remote generation job.

    ``outputs`` only carries URLs when ``status`` is SUCCEEDED and ``error`` is
    only set when ``status`` is FAILED; the normalizer enforces both.
    """

    id: str
    status: TaskStatus
    outputs: List[str] = field(default_factory=list)
    progress: Optional[float] = None
    queue_position: Optional[int] = None
    error: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "outputs": list(self.outputs),
            "error": self.error,
            "progress": self.progress,
            "queuePosition": self.queue_position,
        }
