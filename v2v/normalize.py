"""Map heterogeneous task payloads onto :class:`~v2v.models.RemoteTask`.

Output discovery is an ordered list of extractors. Each extractor looks at
one place in the payload and returns ``None`` when that shape is absent, or
a list of URLs (possibly empty) when it is present. The first extractor
that returns a list decides the outputs; a present-but-empty field means
"no outputs yet" and later extractors are not consulted.

:func:`normalize` never raises and performs no I/O.
"""
import math
from numbers import Real
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .models import RemoteTask, TaskStatus

STATUS_SYNONYMS = {
    "COMPLETED": TaskStatus.SUCCEEDED,
    "SUCCESS": TaskStatus.SUCCEEDED,
    "ERROR": TaskStatus.FAILED,
}

URL_KEYS = ("uri", "url", "signedUrl", "downloadUrl", "videoUri", "assetUrl", "href")

# Largest queue position stored as a record field
MAX_QUEUE_POSITION = 2 ** 31 - 1

Extractor = Callable[[dict], Optional[List[str]]]


def map_status(raw_status: Any) -> TaskStatus:
    text = "" if raw_status is None else str(raw_status).strip().upper()
    if text in STATUS_SYNONYMS:
        return STATUS_SYNONYMS[text]
    try:
        return TaskStatus(text)
    except ValueError:
        # Unknown vocabulary must never read as completion or failure
        return TaskStatus.RUNNING


def pick_url(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry or None
    if not isinstance(entry, dict):
        return None
    for key in URL_KEYS:
        value = entry.get(key)
        if value:
            return value if isinstance(value, str) else None
    return None


def urls_from_list(entries: Sequence[Any]) -> List[str]:
    urls = []
    for entry in entries:
        url = pick_url(entry)
        if url is not None:
            urls.append(url)
    return urls


def _singular(value: Any) -> Optional[List[str]]:
    """A field that may hold a list, a bare URL, or one object."""
    if isinstance(value, list):
        return urls_from_list(value)
    if isinstance(value, str):
        return [value] if value else None
    if isinstance(value, dict):
        url = pick_url(value)
        return [url] if url else []
    return None


def _list_at(key: str) -> Extractor:
    def extract(payload: dict) -> Optional[List[str]]:
        value = payload.get(key)
        return urls_from_list(value) if isinstance(value, list) else None
    extract.__name__ = f"list_at_{key}"
    return extract


def _from_output(payload: dict) -> Optional[List[str]]:
    return _singular(payload.get("output"))


def _from_result(payload: dict) -> Optional[List[str]]:
    result = payload.get("result")
    if isinstance(result, list):
        return urls_from_list(result)
    if not isinstance(result, dict):
        return None
    for key in ("assets", "files", "media"):
        if isinstance(result.get(key), list):
            return urls_from_list(result[key])
    return _singular(result.get("output"))


OUTPUT_EXTRACTORS: Tuple[Extractor, ...] = (
    _list_at("outputs"),
    _from_output,
    _from_result,
    _list_at("assets"),
    _list_at("files"),
    _list_at("media"),
)


def extract_outputs(payload: dict, extractors: Sequence[Extractor] = OUTPUT_EXTRACTORS) -> List[str]:
    for extractor in extractors:
        found = extractor(payload)
        if found is not None:
            return found
    return []


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _verbatim(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _get(payload: dict, *path: str) -> Any:
    node: Any = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def extract_error(payload: dict) -> Optional[str]:
    candidates = (
        _get(payload, "failure", "reason"),
        payload.get("failure"),
        _get(payload, "error", "message"),
        payload.get("error"),
        payload.get("message"),
    )
    for candidate in candidates:
        text = _text(candidate)
        if text is not None:
            return text
    return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def extract_progress(payload: dict) -> Optional[float]:
    value = _number(payload.get("progress"))
    if value is None:
        value = _number(_get(payload, "metrics", "progress"))
    # A percentage; anything outside 0-100 is treated as absent
    if value is None or not 0 <= value <= 100:
        return None
    return value


def extract_queue_position(payload: dict) -> Optional[int]:
    value = _number(payload.get("queuePosition"))
    if value is None:
        value = _number(_get(payload, "queue", "position"))
    if value is None or not 0 <= value <= MAX_QUEUE_POSITION or value != int(value):
        return None
    return int(value)


def normalize(raw: Any, fallback_id: str = "") -> RemoteTask:
    if not isinstance(raw, dict):
        return RemoteTask(id=fallback_id, status=TaskStatus.RUNNING)

    status = map_status(raw.get("status"))
    outputs = extract_outputs(raw) if status is TaskStatus.SUCCEEDED else []
    error = extract_error(raw) if status is TaskStatus.FAILED else None
    task_id = raw.get("id")

    return RemoteTask(
        id=str(task_id) if task_id not in (None, "") else fallback_id,
        status=status,
        outputs=outputs,
        progress=extract_progress(raw),
        queue_position=extract_queue_position(raw),
        error=error,
        created_at=_verbatim(raw.get("createdAt")),
        updated_at=_verbatim(raw.get("updatedAt")),
    )
