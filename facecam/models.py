"""
Pydantic data models shared by the loop, the renderer and the API.
"""
from __future__ import annotations
from enum import Enum
from typing import List, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field


class ModelVariant(str, Enum):
    MEDIAPIPE_FACEMESH = "mediapipe_facemesh"
    BLAZEFACE = "blazeface"
    DEEPFACE_OPENCV = "deepface_opencv"


class SchedulePolicy(str, Enum):
    INTERVAL = "interval"   # fixed polling period
    REFRESH = "refresh"     # once per capture frame


class RenderStyle(str, Enum):
    BOX = "box"
    MESH = "mesh"


class LoopState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    RUNNING = "running"
    ERROR = "error"


class ErrorReason(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    DEVICE_BUSY = "device_busy"
    MODEL_LOAD_FAILED = "model_load_failed"


class ModelConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    variant: ModelVariant = ModelVariant.MEDIAPIPE_FACEMESH
    max_detections: int = Field(default=1, ge=1)
    load_auxiliary: bool = False
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


# detections


class BoxDetection(BaseModel):
    """Axis-aligned face box in frame pixels."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    width: float
    height: float

    def bounding_box(self) -> BoxDetection:
        return self


class LandmarkDetection(BaseModel):
    """Ordered landmark points in frame pixels; the count is fixed by the model."""
    model_config = ConfigDict(frozen=True)

    points: Tuple[Tuple[float, float], ...]

    def bounding_box(self) -> BoxDetection:
        if not self.points:
            return BoxDetection(x=0, y=0, width=0, height=0)
        xs = [p[0] for p in self.points]
        ys = [p[1] for p in self.points]
        return BoxDetection(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))


Detection = Union[BoxDetection, LandmarkDetection]


class LoopStatus(BaseModel):
    state: LoopState
    reason: Optional[ErrorReason] = None
    message: str
    cycles: int = 0
    skipped: int = 0
    failures: int = 0
    last_detection_count: int = 0
    notified: bool = False
    started_at: Optional[float] = None
    detections: List[Detection] = Field(default_factory=list)
