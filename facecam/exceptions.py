"""
Domain exceptions for the detection loop.

Only ModelLoadError and CaptureError are fatal for a loop; InferenceError is
raised per frame and handled by the loop as "no detection".
"""
from typing import Any, Optional

from facecam.models import ErrorReason


class FacecamError(Exception):
    """Base exception carrying a message and optional details."""

    def __init__(self, message: str = "facecam error", details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class ModelLoadError(FacecamError):
    """Raised when the inference backend or the model weights cannot be loaded."""

    reason = ErrorReason.MODEL_LOAD_FAILED

    def __init__(self, variant: str, details: Optional[Any] = None):
        self.variant = variant
        super().__init__(f"Could not load model '{variant}'", details)


class CaptureError(FacecamError):
    """Raised when the camera cannot be acquired; `reason` tells the user why."""

    def __init__(self, reason: ErrorReason, source: Any = None, details: Optional[Any] = None):
        self.reason = reason
        self.source = source
        super().__init__(f"Could not open camera {source!r}: {reason.value}", details)


class InferenceError(FacecamError):
    """Raised for a single failed inference call."""
