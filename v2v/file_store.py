import time
import uuid
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredFile:
    data: bytes
    filename: str
    mimetype: str
    stored_at: float


class FileStore:
    """In-memory upload cache with a fixed time-to-live.

    Owned by whoever creates it (the app factory); nothing here is module
    state. Expired entries are dropped on every access.
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._files: Dict[str, StoredFile] = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._files)

    def _evict_locked(self, now: float) -> int:
        cutoff = now - self.ttl_seconds
        expired = [fid for fid, f in self._files.items() if f.stored_at <= cutoff]
        for fid in expired:
            del self._files[fid]
        return len(expired)

    def evict_expired(self) -> int:
        with self._lock:
            count = self._evict_locked(self.clock())
        if count:
            logger.info("[file_store] evicted %d expired upload(s)", count)
        return count

    def put(self, data: bytes, filename: str, mimetype: str) -> str:
        file_id = uuid.uuid4().hex
        with self._lock:
            now = self.clock()
            self._evict_locked(now)
            self._files[file_id] = StoredFile(
                data=data,
                filename=secure_filename(filename or "") or "video",
                mimetype=mimetype,
                stored_at=now,
            )
        return file_id

    def get(self, file_id: str) -> Optional[StoredFile]:
        with self._lock:
            self._evict_locked(self.clock())
            return self._files.get(file_id)

    def delete(self, file_id: str) -> bool:
        with self._lock:
            return self._files.pop(file_id, None) is not None
