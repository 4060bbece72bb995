"""
Configuration for the live detection loop.
"""
from pydantic import BaseModel
import logging
import os

from facecam.models import ModelConfig, ModelVariant, RenderStyle, SchedulePolicy

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # capture
    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    CAMERA_SOURCE: str | None = os.getenv("CAMERA_SOURCE") or None
    CAPTURE_WIDTH: int = int(os.getenv("CAPTURE_WIDTH", "640"))
    CAPTURE_HEIGHT: int = int(os.getenv("CAPTURE_HEIGHT", "480"))

    # model
    MODEL_VARIANT: str = os.getenv("MODEL_VARIANT", ModelVariant.MEDIAPIPE_FACEMESH.value)
    MAX_DETECTIONS: int = int(os.getenv("MAX_DETECTIONS", "1"))
    LOAD_AUXILIARY_MODEL: bool = _env_bool("LOAD_AUXILIARY_MODEL")
    MIN_DETECTION_CONFIDENCE: float = float(os.getenv("MIN_DETECTION_CONFIDENCE", "0.5"))

    # loop
    SCHEDULE_POLICY: str = os.getenv("SCHEDULE_POLICY", SchedulePolicy.INTERVAL.value)
    DETECT_INTERVAL: float = float(os.getenv("DETECT_INTERVAL", "1.0"))
    RENDER_STYLE: str = os.getenv("RENDER_STYLE", RenderStyle.BOX.value)
    STOP_TIMEOUT: float = float(os.getenv("STOP_TIMEOUT", "2.0"))

    # greeting side-channel (empty URL disables the POST)
    NOTIFY_URL: str = os.getenv("NOTIFY_URL", "")
    NOTIFY_TIMEOUT: float = float(os.getenv("NOTIFY_TIMEOUT", "10"))
    GREETING_EMOTION: bool = _env_bool("GREETING_EMOTION")
    AUDIO_UPLOAD_URL: str = os.getenv("AUDIO_UPLOAD_URL", "")
    AUDIO_CLIP_SECONDS: float = float(os.getenv("AUDIO_CLIP_SECONDS", "0"))
    AUDIO_SAMPLE_RATE: int = int(os.getenv("AUDIO_SAMPLE_RATE", "16000"))

    # static web assets
    STATIC_DIR: str = os.getenv("STATIC_DIR", "web")

    def __init__(self, **data):
        super().__init__(**data)
        # Normalize enum-valued strings; unknown values fall back to defaults
        object.__setattr__(self, "MODEL_VARIANT",
                           _normalize(self.MODEL_VARIANT, ModelVariant, ModelVariant.MEDIAPIPE_FACEMESH))
        object.__setattr__(self, "SCHEDULE_POLICY",
                           _normalize(self.SCHEDULE_POLICY, SchedulePolicy, SchedulePolicy.INTERVAL))
        object.__setattr__(self, "RENDER_STYLE",
                           _normalize(self.RENDER_STYLE, RenderStyle, RenderStyle.BOX))
        object.__setattr__(self, "MAX_DETECTIONS", max(1, int(self.MAX_DETECTIONS)))
        object.__setattr__(self, "MIN_DETECTION_CONFIDENCE",
                           min(1.0, max(0.0, float(self.MIN_DETECTION_CONFIDENCE))))
        object.__setattr__(self, "DETECT_INTERVAL", max(0.01, float(self.DETECT_INTERVAL)))
        # the greeting clip is bounded
        object.__setattr__(self, "AUDIO_CLIP_SECONDS", min(30.0, max(0.0, float(self.AUDIO_CLIP_SECONDS))))
        object.__setattr__(self, "LOG_LEVEL", (self.LOG_LEVEL or "INFO").strip().upper())

    def session_config(self) -> ModelConfig:
        return ModelConfig(
            variant=ModelVariant(self.MODEL_VARIANT),
            max_detections=self.MAX_DETECTIONS,
            load_auxiliary=self.LOAD_AUXILIARY_MODEL,
            min_confidence=self.MIN_DETECTION_CONFIDENCE,
        )

    @property
    def capture_source(self) -> int | str:
        """Device index unless an explicit path/URL source is configured."""
        return self.CAMERA_SOURCE if self.CAMERA_SOURCE else self.CAMERA_INDEX


def _normalize(value, enum_cls, default):
    if isinstance(value, enum_cls):
        return value.value
    raw = (str(value) if value is not None else "").strip().lower()
    try:
        return enum_cls(raw).value
    except ValueError:
        logger.warning(f"[config] unknown {enum_cls.__name__} {value!r}; using {default.value}")
        return default.value
