"""Thin client for the Runway video-to-video task API.

Creation and cancellation are issued exactly once and never retried here;
creation is not idempotent and a retry could start a second billable job.
Retrying status queries is the poller's job.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from . import config
from .errors import RemoteServiceError, ValidationError
from .models import RemoteTask
from .normalize import normalize
from .validation import validate_generation

logger = logging.getLogger(__name__)

CREATE_PATH = "/video_to_video"
TASKS_PATH = "/tasks"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_from_response(resp) -> RemoteServiceError:
    text = resp.text or ""
    try:
        data = json.loads(text) if text else {}
    except ValueError:
        data = {"message": text}
    if not isinstance(data, dict):
        data = {}

    message = data.get("error")
    if isinstance(message, dict):
        message = message.get("message")
    if not isinstance(message, str) or not message:
        message = data.get("message")
    if not isinstance(message, str) or not message:
        message = f"HTTP {resp.status_code} {getattr(resp, 'reason', '') or ''}".strip()

    code = data.get("code") if isinstance(data.get("code"), str) else "API_ERROR"
    return RemoteServiceError(resp.status_code, code, message)


class RunwayClient:
    def __init__(self, api_key: Optional[str] = None, base_url: str = config.RUNWAY_API_BASE,
                 version: str = config.RUNWAY_VERSION, timeout: float = config.RUNWAY_TIMEOUT_SEC,
                 session: Optional[requests.Session] = None):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.version = version
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key or config.runway_api_key()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "X-Runway-Version": self.version,
            "Content-Type": "application/json",
        }

    def _task_url(self, task_id: str) -> str:
        if not isinstance(task_id, str) or not task_id.strip():
            raise ValidationError("taskId", "Invalid task ID")
        return f"{self.base_url}{TASKS_PATH}/{quote(task_id.strip(), safe='')}"

    def _request(self, method: str, url: str, payload: Optional[dict] = None):
        if not self.api_key:
            raise RemoteServiceError(500, "CONFIG_ERROR", "RUNWAY_API_KEY environment variable is required")
        try:
            resp = self.session.request(
                method, url, headers=self._headers(), json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RemoteServiceError(503, "NETWORK_ERROR", f"Could not reach Runway API: {e}") from e
        if not 200 <= resp.status_code < 300:
            err = error_from_response(resp)
            logger.warning("[runway] %s %s -> %s %s", method, url, err.http_status, err.message)
            raise err
        return resp

    @staticmethod
    def _json(resp) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteServiceError(502, "MALFORMED_RESPONSE", "Runway API returned a non-JSON body") from e

    # -----------------------
    # Submitter
    # -----------------------
    def create_task(self, body: Dict[str, Any]) -> Dict[str, str]:
        resp = self._request("POST", f"{self.base_url}{CREATE_PATH}", body)
        task = self._json(resp)
        if not isinstance(task, dict) or not task.get("id"):
            raise RemoteServiceError(502, "MALFORMED_RESPONSE", "Runway API response is missing a task id")
        now = _now_iso()
        return {
            "id": str(task["id"]),
            "status": task.get("status") or "QUEUED",
            "createdAt": task.get("createdAt") or now,
            "updatedAt": task.get("updatedAt") or now,
        }

    def submit(self, prompt_text: str, model: str, ratio: str, video_uri: str,
               seed: Optional[int] = None, references: Optional[List[Dict[str, str]]] = None,
               content_moderation: Optional[Dict[str, str]] = None) -> str:
        """Validate input, create one remote task and return its id."""
        params = validate_generation(prompt_text, model, ratio, video_uri, seed)
        body: Dict[str, Any] = {
            "model": params.model,
            "promptText": params.prompt_text,
            "videoUri": params.video_uri,
            "ratio": params.ratio,
        }
        if params.seed is not None:
            body["seed"] = params.seed
        if references:
            body["references"] = references
        if content_moderation:
            body["contentModeration"] = content_moderation

        task = self.create_task(body)
        logger.info("[submit] task created: %s (model=%s ratio=%s)", task["id"], params.model, params.ratio)
        return task["id"]

    # -----------------------
    # Status
    # -----------------------
    def get_task_raw(self, task_id: str) -> Any:
        return self._json(self._request("GET", self._task_url(task_id)))

    def get_task_status(self, task_id: str) -> RemoteTask:
        return normalize(self.get_task_raw(task_id), fallback_id=task_id.strip())

    # -----------------------
    # Canceller
    # -----------------------
    def cancel_task(self, task_id: str) -> Dict[str, bool]:
        self._request("DELETE", self._task_url(task_id))
        logger.info("[cancel] cancellation acknowledged: %s", task_id)
        return {"cancelled": True}
