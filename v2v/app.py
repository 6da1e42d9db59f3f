import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flask import Blueprint, Flask, Response, current_app, jsonify, redirect, request, url_for
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from . import config
from .errors import RemoteServiceError, ValidationError
from .file_store import FileStore
from .jobs import JobStore, TaskWatcher, public_view
from .models import TaskStatus
from .poller import PollPolicy
from .runway import RunwayClient
from .validation import GenerationParams, require_https, validate_video_file

logger = logging.getLogger(__name__)

# -----------------------
# Rate Limiting (per-IP)
# -----------------------
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)

api = Blueprint("api", __name__)


@dataclass
class Services:
    runway: RunwayClient
    files: FileStore
    store: Optional[JobStore] = None
    watcher: Optional[TaskWatcher] = None
    references: List[Dict[str, str]] = field(default_factory=list)
    content_moderation: Optional[Dict[str, str]] = None


def services() -> Services:
    return current_app.extensions["v2v"]


# -----------------------
# Generation endpoints
# -----------------------
@api.route("/api/generate", methods=["POST"])
@limiter.limit("5 per minute")
def api_generate():
    """
    Start a remote generation.
    Body: { "promptText": "...", "model": "gen4_aleph", "ratio": "1280:720", "videoUrl": "https://...", "seed": 42 }
    Returns: { "taskId": "..." }
    """
    if not request.is_json:
        return jsonify({"error": "Only JSON body with videoUrl is supported"}), 400
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    video_uri = require_https("videoUrl", data.get("videoUrl"))

    svc = services()
    task_id = svc.runway.submit(
        data.get("promptText"),
        data.get("model"),
        data.get("ratio"),
        video_uri,
        seed=data.get("seed"),
        references=svc.references or None,
        content_moderation=svc.content_moderation,
    )

    if svc.store is not None:
        # submit() accepted these, so they are strings here
        params = GenerationParams(
            prompt_text=data["promptText"].strip(),
            model=data["model"].strip(),
            ratio=data["ratio"].strip(),
            video_uri=video_uri,
            seed=data.get("seed"),
        )
        svc.store.make_job(task_id, params)
    if svc.watcher is not None:
        svc.watcher.watch(task_id)
    return jsonify({"taskId": task_id})


@api.route("/api/task/<task_id>", methods=["GET"])
@limiter.limit("60 per minute")
def api_task_status(task_id: str):
    svc = services()
    task = svc.runway.get_task_status(task_id)
    if svc.store is not None:
        svc.store.record_task(task)
    return jsonify(task.to_dict())


@api.route("/api/task/<task_id>", methods=["DELETE"])
@limiter.limit("30 per minute")
def api_task_cancel(task_id: str):
    svc = services()
    ack = svc.runway.cancel_task(task_id)
    watched = svc.watcher.cancel(task_id) if svc.watcher is not None else False
    if not watched and svc.store is not None:
        svc.store.update_job(task_id, poll_state="CANCELLED")
    return jsonify(ack)


@api.route("/api/task/<task_id>/raw", methods=["GET"])
@limiter.limit("30 per minute")
def api_task_raw(task_id: str):
    return jsonify(services().runway.get_task_raw(task_id))


@api.route("/api/task/<task_id>/download", methods=["GET"])
@limiter.limit("30 per minute")
def api_task_download(task_id: str):
    task = services().runway.get_task_status(task_id)
    if task.status is not TaskStatus.SUCCEEDED:
        return jsonify({"error": "Task has not succeeded", "status": task.status.value}), 409
    index = request.args.get("index", 0, type=int)
    if not 0 <= index < len(task.outputs):
        return jsonify({"error": "output not found"}), 404
    return redirect(task.outputs[index], code=302)


# -----------------------
# Generation records
# -----------------------
def _store_or_none() -> Optional[JobStore]:
    return services().store


@api.route("/api/jobs", methods=["GET"])
@limiter.limit("30 per minute")
def api_list_jobs():
    store = _store_or_none()
    if store is None:
        return jsonify({"error": "Generation tracking is not configured"}), 503
    page = max(request.args.get("page", 1, type=int), 1)
    per_page = min(max(request.args.get("per_page", 20, type=int), 1), 100)
    total, items = store.list_jobs(page, per_page)
    return jsonify({
        "total": total,
        "page": page,
        "per_page": per_page,
        "items": items,
    })


@api.route("/api/jobs/<task_id>", methods=["GET"])
@limiter.limit("30 per minute")
def api_get_job(task_id: str):
    store = _store_or_none()
    if store is None:
        return jsonify({"error": "Generation tracking is not configured"}), 503
    job = store.get_job(task_id)
    if not job:
        return jsonify({"error": "job not found"}), 404
    view = public_view(job)
    view["watching"] = bool(services().watcher and services().watcher.is_watching(task_id))
    return jsonify(view)


# -----------------------
# Upload shim
# -----------------------
@api.route("/api/files", methods=["POST"])
@limiter.limit("10 per minute")
def api_upload_file():
    base_url = current_app.config["PUBLIC_BASE_URL"]
    if not base_url.startswith("https://"):
        logger.error("[upload][ERROR] PUBLIC_BASE_URL must be an https origin, got %r", base_url)
        return jsonify({"error": "File upload not configured for production"}), 500

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("file", "No video file provided")
    data = upload.read()
    validate_video_file(upload.mimetype, len(data), current_app.config["MAX_UPLOAD_BYTES"])

    file_id = services().files.put(data, upload.filename, upload.mimetype)
    url = f"{base_url}{url_for('api.serve_file', file_id=file_id)}"
    logger.info("[upload] stored %s (%d bytes) -> %s", file_id, len(data), url)
    return jsonify({"fileId": file_id, "url": url}), 201


@api.route("/api/files/<file_id>", methods=["GET"])
@limiter.exempt
def serve_file(file_id: str):
    stored = services().files.get(file_id)
    if stored is None:
        return jsonify({"error": "File not found"}), 404
    return Response(
        stored.data,
        mimetype=stored.mimetype,
        headers={"Cache-Control": "public, max-age=3600"},
    )


@api.route("/")
@limiter.exempt
def health():
    return jsonify({"ok": True})


# Additional health endpoints commonly used by cloud platforms
@api.route("/healthz")
@api.route("/api/health")
@limiter.exempt
def healthz():
    return jsonify({"status": "healthy"})


# -----------------------
# Error handlers
# -----------------------
def handle_validation_error(e: ValidationError):
    return jsonify({"error": e.message, "field": e.field}), 400


def handle_remote_error(e: RemoteServiceError):
    logger.warning("[runway][%s] %s (%s)", e.kind, e.message, e.http_status)
    return jsonify({
        "error": "Runway API Error",
        "message": e.message,
        "code": e.code,
        "kind": e.kind,
        "permanent": e.is_permanent,
    }), (500 if e.is_service_error else 400)


def ratelimit_handler(e):
    return jsonify({"error": "Too many requests", "details": str(getattr(e, "description", "rate limit exceeded"))}), 429


def handle_unexpected(e: Exception):
    if isinstance(e, HTTPException):
        return e
    logger.exception("[app][ERROR] unhandled error")
    return jsonify({"error": "Internal server error"}), 500


def create_app(runway: Optional[RunwayClient] = None, job_store: Optional[JobStore] = None,
               file_store: Optional[FileStore] = None, watch_tasks: Optional[bool] = None,
               policy: Optional[PollPolicy] = None, clock=None,
               settings: Optional[Dict[str, Any]] = None) -> Flask:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = Flask(__name__)
    # Respect reverse-proxy headers in production (X-Forwarded-For/Proto)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)

    app.config.update(
        PUBLIC_BASE_URL=config.PUBLIC_BASE_URL,
        MAX_UPLOAD_BYTES=config.MAX_UPLOAD_BYTES,
        # multipart framing overhead on top of the file itself
        MAX_CONTENT_LENGTH=config.MAX_UPLOAD_BYTES + 1024 * 1024,
    )
    if settings:
        app.config.update(settings)

    limiter.init_app(app)

    # CORS configuration: allow specific origins in production via CORS_ORIGINS
    if config.CORS_ORIGINS:
        origins_list = [o.strip() for o in config.CORS_ORIGINS.split(",") if o.strip()]
        CORS(app, origins=origins_list, supports_credentials=True)
    else:
        # Default permissive CORS for local/dev
        CORS(app)

    if runway is None:
        runway = RunwayClient()
    if job_store is None and config.MONGO_URI:
        job_store = JobStore.from_uri(config.MONGO_URI, config.MONGO_DB)
    if job_store is None:
        logger.warning("[app][WARN] MONGODB_URI not set; generation records and background watching are disabled")

    watch = config.WATCH_TASKS if watch_tasks is None else watch_tasks
    watcher = None
    if watch and job_store is not None:
        watcher = TaskWatcher(runway.get_task_status, job_store, policy=policy, clock=clock)

    references = []
    if config.REFERENCE_IMAGE_URI:
        references.append({"type": "image", "uri": config.REFERENCE_IMAGE_URI})

    app.extensions["v2v"] = Services(
        runway=runway,
        files=file_store if file_store is not None else FileStore(ttl_seconds=config.FILE_STORE_TTL_SEC),
        store=job_store,
        watcher=watcher,
        references=references,
        content_moderation={"publicFigureThreshold": config.PUBLIC_FIGURE_THRESHOLD},
    )

    app.register_blueprint(api)
    app.register_error_handler(ValidationError, handle_validation_error)
    app.register_error_handler(RemoteServiceError, handle_remote_error)
    app.register_error_handler(429, ratelimit_handler)
    app.register_error_handler(Exception, handle_unexpected)
    return app


def main():
    app = create_app()
    app.run(host="0.0.0.0", port=config.PORT, debug=config.FLASK_DEBUG)


if __name__ == "__main__":
    main()
