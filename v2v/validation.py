from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

from .errors import ValidationError

ALLOWED_RATIOS = (
    "1280:720",
    "720:1280",
    "960:960",
    "1104:832",
    "832:1104",
    "1584:672",
)

ALLOWED_MODELS = ("gen4_aleph",)

MAX_PROMPT_LENGTH = 500
MAX_SEED = 4294967295

# Container types the generation service accepts for the source video
ALLOWED_VIDEO_TYPES = (
    "video/mp4",
    "video/webm",
    "video/quicktime",
    "video/mov",
    "video/ogg",
    "video/h264",
)


@dataclass(frozen=True)
class GenerationParams:
    prompt_text: str
    model: str
    ratio: str
    video_uri: str
    seed: Optional[int] = None


def require_https(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "No video URL provided")
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme.lower() != "https" or not parsed.netloc:
        raise ValidationError(field, "Only HTTPS URLs are allowed")
    return value


def validate_generation(prompt_text: Any, model: Any, ratio: Any, video_uri: Any,
                        seed: Any = None) -> GenerationParams:
    """Check caller input and return trimmed parameters.

    Raises :class:`ValidationError` naming the first offending field.
    """
    if not isinstance(prompt_text, str) or not prompt_text.strip():
        raise ValidationError("promptText", "Prompt is required")
    prompt_text = prompt_text.strip()
    if len(prompt_text) > MAX_PROMPT_LENGTH:
        raise ValidationError("promptText", f"Prompt too long (max {MAX_PROMPT_LENGTH} characters)")

    model = model.strip() if isinstance(model, str) else model
    if model not in ALLOWED_MODELS:
        raise ValidationError("model", f"Unsupported model; expected one of {', '.join(ALLOWED_MODELS)}")

    ratio = ratio.strip() if isinstance(ratio, str) else ratio
    if ratio not in ALLOWED_RATIOS:
        raise ValidationError("ratio", f"Unsupported ratio; expected one of {', '.join(ALLOWED_RATIOS)}")

    if seed is not None:
        if isinstance(seed, bool) or not isinstance(seed, int):
            raise ValidationError("seed", "Seed must be an integer")
        if not 0 <= seed <= MAX_SEED:
            raise ValidationError("seed", f"Seed must be between 0 and {MAX_SEED}")

    return GenerationParams(
        prompt_text=prompt_text,
        model=model,
        ratio=ratio,
        video_uri=require_https("videoUri", video_uri),
        seed=seed,
    )


def validate_video_file(mimetype: Optional[str], size: int, max_bytes: int) -> None:
    mimetype = (mimetype or "").lower()
    if not any(mimetype == t or t in mimetype for t in ALLOWED_VIDEO_TYPES):
        raise ValidationError(
            "file", "Only MP4, WebM, MOV, OGG, and H.264 video files are supported"
        )
    if size > max_bytes:
        raise ValidationError("file", f"File size must be less than {max_bytes // (1024 * 1024)}MB")
