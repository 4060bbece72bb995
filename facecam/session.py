"""Model session: load a face model once, reuse it across frames, dispose it on teardown.

Backends are imported lazily so the heavy ML stacks are only pulled in when a
session is actually created (and so tests can inject fakes via sys.modules):

- mediapipe_facemesh: MediaPipe FaceMesh -> LandmarkDetection (468 points, 478 with refined iris)
- blazeface: MediaPipe FaceDetection (BlazeFace) -> BoxDetection
- deepface_opencv: DeepFace.extract_faces with the OpenCV detector -> BoxDetection
"""
from __future__ import annotations
import logging
import threading
from typing import List

import cv2
import numpy as np

from facecam.exceptions import InferenceError, ModelLoadError
from facecam.models import BoxDetection, Detection, LandmarkDetection, ModelConfig, ModelVariant

logger = logging.getLogger(__name__)


class _FaceMeshBackend:
    def __init__(self, config: ModelConfig):
        import mediapipe as mp
        self.mesh = mp.solutions.face_mesh.FaceMesh(
            max_num_faces=config.max_detections,
            refine_landmarks=config.load_auxiliary,
            static_image_mode=False,
            min_detection_confidence=config.min_confidence,
        )

    def process(self, frame: np.ndarray) -> List[Detection]:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        res = self.mesh.process(rgb)
        h, w = frame.shape[:2]
        out: List[Detection] = []
        for fl in res.multi_face_landmarks or []:
            pts = tuple((float(lm.x * w), float(lm.y * h)) for lm in fl.landmark)
            out.append(LandmarkDetection(points=pts))
        return out

    def close(self) -> None:
        self.mesh.close()


class _BlazeFaceBackend:
    def __init__(self, config: ModelConfig):
        import mediapipe as mp
        # model_selection=1 is the full-range model (faces further than ~2m)
        self.detector = mp.solutions.face_detection.FaceDetection(
            model_selection=1 if config.load_auxiliary else 0,
            min_detection_confidence=config.min_confidence,
        )

    def process(self, frame: np.ndarray) -> List[Detection]:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        res = self.detector.process(rgb)
        h, w = frame.shape[:2]
        out: List[Detection] = []
        for det in res.detections or []:
            rb = det.location_data.relative_bounding_box
            out.append(BoxDetection(
                x=float(rb.xmin * w), y=float(rb.ymin * h),
                width=float(rb.width * w), height=float(rb.height * h),
            ))
        return out

    def close(self) -> None:
        self.detector.close()


class _DeepFaceBackend:
    def __init__(self, config: ModelConfig):
        from deepface import DeepFace
        self.DeepFace = DeepFace
        self.min_confidence = config.min_confidence

    def process(self, frame: np.ndarray) -> List[Detection]:
        dets = self.DeepFace.extract_faces(
            img_path=frame,
            detector_backend="opencv",
            enforce_detection=False,
            align=False,
        )
        out: List[Detection] = []
        h, w = frame.shape[:2]
        for d in dets or []:
            fa = (d or {}).get("facial_area") or {}
            fw, fh = int(fa.get("w", 0)), int(fa.get("h", 0))
            # with enforce_detection=False DeepFace returns the whole frame at confidence 0
            if fw <= 0 or fh <= 0 or (fw >= w and fh >= h):
                continue
            try:
                conf = float(d.get("confidence", 1.0))
            except (TypeError, ValueError):
                conf = 1.0
            if conf < self.min_confidence:
                continue
            out.append(BoxDetection(x=float(fa.get("x", 0)), y=float(fa.get("y", 0)),
                                    width=float(fw), height=float(fh)))
        return out

    def close(self) -> None:
        pass


_BACKENDS = {
    ModelVariant.MEDIAPIPE_FACEMESH: _FaceMeshBackend,
    ModelVariant.BLAZEFACE: _BlazeFaceBackend,
    ModelVariant.DEEPFACE_OPENCV: _DeepFaceBackend,
}


class ModelSession:
    """Exclusive handle on one loaded model; not meant to be shared between loops."""

    def __init__(self, config: ModelConfig, backend):
        self.config = config
        self._backend = backend
        self._lock = threading.Lock()
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def infer(self, frame: np.ndarray | None) -> List[Detection]:
        """Run the model on one frame.

        Returns detections in model order, at most `max_detections`; [] when no face.
        Raises InferenceError for a missing frame, a disposed session or a backend failure.
        """
        if frame is None or getattr(frame, "size", 0) == 0:
            raise InferenceError("No frame to run inference on", "capture is not producing data")
        with self._lock:
            if self._disposed:
                raise InferenceError("Model session already disposed")
            try:
                dets = self._backend.process(frame)
            except Exception as e:
                raise InferenceError(f"{self.config.variant.value} inference failed", e) from e
        return list(dets)[: self.config.max_detections]

    def dispose(self) -> None:
        """Release backend resources. Safe to call more than once."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            backend, self._backend = self._backend, None
        try:
            backend.close()
        finally:
            logger.debug(f"[session] disposed variant={self.config.variant.value}")


def load_model(config: ModelConfig) -> ModelSession:
    """Create the backend for `config.variant`.

    Raises:
        ModelLoadError: library missing, unsupported device, or weights failed to load.
    """
    variant = ModelVariant(config.variant)
    logger.debug(f"[session] loading variant={variant.value} max={config.max_detections} "
                 f"aux={config.load_auxiliary}")
    try:
        backend = _BACKENDS[variant](config)
    except Exception as e:
        logger.error(f"[session] load failed variant={variant.value}: {e}")
        raise ModelLoadError(variant.value, e) from e
    logger.info(f"[session] model ready variant={variant.value}")
    return ModelSession(config, backend)
