import os
import logging

from dotenv import load_dotenv

# -----------------------
# Config & Initialization
# -----------------------
load_dotenv()

logger = logging.getLogger(__name__)


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[config][WARN] %s=%r is not an integer, using %s", name, raw, default)
        return default


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes")


# Runway
RUNWAY_API_BASE = os.getenv("RUNWAY_API_BASE", "https://api.dev.runwayml.com/v1").rstrip("/")
RUNWAY_VERSION = os.getenv("X_RUNWAY_VERSION", "2024-12-01")
RUNWAY_TIMEOUT_SEC = env_int("RUNWAY_TIMEOUT_SEC", 30)
REFERENCE_IMAGE_URI = os.getenv("REFERENCE_IMAGE_URI", "").strip()
PUBLIC_FIGURE_THRESHOLD = os.getenv("PUBLIC_FIGURE_THRESHOLD", "auto")


def runway_api_key():
    # Read lazily so a key added to the environment after import is still picked up
    return os.getenv("RUNWAY_API_KEY") or os.getenv("RUNWAYML_API_SECRET")


# Polling
POLL_INTERVAL_MS = env_int("POLL_INTERVAL_MS", 3000)
POLL_MAX_DURATION_MS = env_int("POLL_MAX_DURATION_MS", 15 * 60 * 1000)
POLL_MAX_CONSECUTIVE_ERRORS = env_int("POLL_MAX_CONSECUTIVE_ERRORS", 3)

# Generation records
MONGO_URI = os.getenv("MONGODB_URI")
MONGO_DB = os.getenv("MONGODB_DB", "v2v")
WATCH_TASKS = env_bool("WATCH_TASKS", True)

# Uploads
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
FILE_STORE_TTL_SEC = env_int("FILE_STORE_TTL_SEC", 3600)
MAX_UPLOAD_BYTES = env_int("MAX_UPLOAD_BYTES", 16 * 1024 * 1024)

# Web
CORS_ORIGINS = os.getenv("CORS_ORIGINS")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = env_int("PORT", 5000)
FLASK_DEBUG = env_bool("FLASK_DEBUG", False)
