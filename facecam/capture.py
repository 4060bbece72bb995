"""
Camera capture adapter.

Opens an OpenCV capture, keeps only the most recent frame (a reader thread
drains the driver buffer so interval polling never sees stale frames), and
classifies open failures into permission / missing / busy.
"""
from __future__ import annotations

import os
import sys
import time
import logging
import threading
from typing import Optional, Tuple

import cv2
import numpy as np

from facecam.config import Settings
from facecam.exceptions import CaptureError
from facecam.models import ErrorReason

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30.0
FIRST_FRAME_TIMEOUT = 5.0


def classify_open_failure(source) -> ErrorReason:
    """Best-effort reason for a capture that failed to open.

    Local files and V4L2 device nodes can be inspected; anything else
    (network streams, other platforms) is reported as a missing device.
    """
    if isinstance(source, str) and not source.isdigit():
        if "://" in source:
            return ErrorReason.DEVICE_NOT_FOUND
        path = source
    elif sys.platform.startswith("linux"):
        path = f"/dev/video{int(source)}"
    else:
        return ErrorReason.DEVICE_NOT_FOUND

    if not os.path.exists(path):
        return ErrorReason.DEVICE_NOT_FOUND
    if not os.access(path, os.R_OK):
        return ErrorReason.PERMISSION_DENIED
    return ErrorReason.DEVICE_BUSY


class CaptureSource:
    """Live frame handle over cv2.VideoCapture. Owned by exactly one loop."""

    def __init__(self, settings: Settings):
        self.s = settings
        self.source = settings.capture_source
        self._cap = None
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None
        self._run = False
        self._thread: Optional[threading.Thread] = None
        self._fps = DEFAULT_FPS
        # files and streams are read at their own frame rate instead of as fast as possible
        self._pace = isinstance(self.source, str) and not self.source.isdigit()

    # ---- lifecycle ----
    def open(self, wait_first_frame: float = FIRST_FRAME_TIMEOUT) -> "CaptureSource":
        """Acquire the device and start reading.

        Raises:
            CaptureError: permission denied, device not found or device busy.
        """
        src = self.source
        if isinstance(src, str) and src.isdigit():
            src = int(src)
        logger.debug(f"[capture] opening source={src!r} hint={self.s.CAPTURE_WIDTH}x{self.s.CAPTURE_HEIGHT}")
        cap = cv2.VideoCapture(src)
        if not cap.isOpened():
            cap.release()
            reason = classify_open_failure(src)
            logger.error(f"[capture] open failed source={src!r} reason={reason.value}")
            raise CaptureError(reason, src)

        # resolution is a hint; drivers may pick the nearest supported mode
        if self.s.CAPTURE_WIDTH > 0:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.s.CAPTURE_WIDTH)
        if self.s.CAPTURE_HEIGHT > 0:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.s.CAPTURE_HEIGHT)
        fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
        self._fps = float(fps) if 1.0 <= fps <= 240.0 else DEFAULT_FPS

        self._cap = cap
        self._run = True
        self._thread = threading.Thread(target=self._reader_loop, name="capture-reader", daemon=True)
        self._thread.start()

        if wait_first_frame > 0:
            deadline = time.monotonic() + wait_first_frame
            while not self.ready and self._run and time.monotonic() < deadline:
                time.sleep(0.01)
            if not self.ready:
                # opened but silent: another process usually holds the stream
                self.release()
                logger.error(f"[capture] no frames from source={src!r} within {wait_first_frame}s")
                raise CaptureError(ErrorReason.DEVICE_BUSY, src, "no frames received")
        logger.info(f"[capture] active source={src!r} size={self.size} fps={self._fps:.1f}")
        return self

    def release(self) -> None:
        self._run = False
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout=1.0)
        self._thread = None
        cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()
            logger.debug(f"[capture] released source={self.source!r}")
        with self._lock:
            self._frame = None

    # ---- frames ----
    def _reader_loop(self):
        misses = 0
        while self._run:
            cap = self._cap
            if cap is None:
                break
            ok, frame = cap.read()
            if not ok or frame is None:
                misses += 1
                if misses == 50:
                    logger.warning(f"[capture] source={self.source!r} stopped delivering frames")
                time.sleep(0.01)
                continue
            misses = 0
            with self._lock:
                self._frame = frame
            if self._pace:
                time.sleep(1.0 / self._fps)

    @property
    def ready(self) -> bool:
        """First frame arrived and its dimensions are known."""
        with self._lock:
            return self._frame is not None and self._frame.ndim >= 2

    @property
    def size(self) -> Optional[Tuple[int, int]]:
        """(width, height) of the native frames, or None before the first frame."""
        with self._lock:
            if self._frame is None:
                return None
            h, w = self._frame.shape[:2]
            return int(w), int(h)

    @property
    def fps(self) -> float:
        return self._fps

    def latest(self) -> Optional[np.ndarray]:
        with self._lock:
            return None if self._frame is None else self._frame.copy()
