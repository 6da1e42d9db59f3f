import time
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from .models import RemoteTask
from .poller import PollPolicy, PollSession, TaskPoller, TerminalOutcome
from .validation import GenerationParams

logger = logging.getLogger(__name__)

PUBLIC_FIELDS = (
    "task_id", "status", "poll_state", "progress", "queue_position", "prompt", "model",
    "ratio", "video_uri", "seed", "outputs", "error", "permanent", "attempts",
    "remote_created_at", "remote_updated_at", "created_at", "updated_at",
)


def public_view(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: doc.get(k) for k in PUBLIC_FIELDS}


# -----------------------
# Generation records
# -----------------------
class JobStore:
    """One MongoDB document per remote task, keyed by ``task_id``."""

    def __init__(self, collection):
        self.col = collection

    @classmethod
    def from_uri(cls, uri: str, db_name: str) -> "JobStore":
        client = MongoClient(uri)
        col = client[db_name]["generations"]
        col.create_index("task_id", unique=True)
        return cls(col)

    def make_job(self, task_id: str, params: GenerationParams) -> Dict[str, Any]:
        now = time.time()
        job_doc = {
            "task_id": task_id,
            "status": "QUEUED",
            "poll_state": None,
            "progress": None,
            "queue_position": None,
            "prompt": params.prompt_text,
            "model": params.model,
            "ratio": params.ratio,
            "video_uri": params.video_uri,
            "seed": params.seed,
            "outputs": [],
            "error": None,
            "permanent": False,
            "attempts": 0,
            "remote_created_at": "",
            "remote_updated_at": "",
            "created_at": now,
            "updated_at": now,
        }
        try:
            self.col.insert_one(dict(job_doc))
            logger.info("[make_job] Job created: %s", task_id)
        except PyMongoError as e:
            logger.error("[make_job][ERROR] Failed to insert job %s: %s", task_id, e)
        return job_doc

    def get_job(self, task_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.col.find_one({"task_id": task_id})
        except PyMongoError as e:
            logger.error("[get_job][ERROR] Failed to fetch job %s: %s", task_id, e)
            return None

    def update_job(self, task_id: str, **fields) -> bool:
        fields["updated_at"] = time.time()
        try:
            result = self.col.update_one({"task_id": task_id}, {"$set": fields})
        except PyMongoError as e:
            logger.error("[update_job][ERROR] Failed to update job %s: %s", task_id, e)
            return False
        if result.matched_count == 0:
            logger.debug("[update_job] No job found with task_id %s", task_id)
            return False
        return True

    def record_task(self, task: RemoteTask) -> bool:
        return self.update_job(
            task.id,
            status=task.status.value,
            progress=task.progress,
            queue_position=task.queue_position,
            outputs=list(task.outputs),
            error=task.error,
            remote_created_at=task.created_at,
            remote_updated_at=task.updated_at,
        )

    def record_outcome(self, outcome: TerminalOutcome) -> bool:
        fields: Dict[str, Any] = {
            "poll_state": outcome.state.value,
            "error": outcome.error,
            "permanent": outcome.permanent,
            "attempts": outcome.attempts,
        }
        if outcome.task is not None:
            fields.update(
                status=outcome.task.status.value,
                progress=outcome.task.progress,
                outputs=list(outcome.task.outputs),
                remote_created_at=outcome.task.created_at,
                remote_updated_at=outcome.task.updated_at,
            )
        return self.update_job(outcome.task_id, **fields)

    def list_jobs(self, page: int = 1, per_page: int = 20) -> Tuple[int, List[Dict[str, Any]]]:
        total = self.col.count_documents({})
        cursor = self.col.find().sort("created_at", DESCENDING).skip((page - 1) * per_page).limit(per_page)
        return total, [public_view(doc) for doc in cursor]


# -----------------------
# Background watcher
# -----------------------
class TaskWatcher:
    """Runs at most one background poll session per task id."""

    def __init__(self, fetch_status: Callable[[str], RemoteTask], store: JobStore,
                 policy: Optional[PollPolicy] = None, clock=None):
        self.fetch_status = fetch_status
        self.store = store
        self.policy = policy or PollPolicy.from_env()
        self.clock = clock
        self._sessions: Dict[str, PollSession] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def watch(self, task_id: str) -> bool:
        poller = TaskPoller(self.fetch_status, clock=self.clock, on_update=self.store.record_task)
        session = poller.new_session(task_id, self.policy)
        t = threading.Thread(target=self._run, args=(poller, session), daemon=True,
                             name=f"watch-{task_id[:12]}")
        with self._lock:
            if task_id in self._sessions:
                return False
            self._sessions[task_id] = session
            self._threads[task_id] = t
        t.start()
        logger.info("[watch] polling %s every %dms (max %d attempts)", task_id,
                    self.policy.interval_ms, self.policy.max_attempts)
        return True

    def _run(self, poller: TaskPoller, session: PollSession) -> None:
        try:
            outcome = poller.run(session)
            self.store.record_outcome(outcome)
        except Exception as e:
            logger.exception("[watch][ERROR] poll session for %s crashed", session.task_id)
            self.store.update_job(session.task_id, poll_state="FAILED", error=str(e))
        finally:
            with self._lock:
                self._sessions.pop(session.task_id, None)
                self._threads.pop(session.task_id, None)

    def cancel(self, task_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(task_id)
        if session is None:
            return False
        session.cancel()
        return True

    def is_watching(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._sessions

    def join(self, task_id: str, timeout: Optional[float] = None) -> None:
        with self._lock:
            t = self._threads.get(task_id)
        if t is not None:
            t.join(timeout)
