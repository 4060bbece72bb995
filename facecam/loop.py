# facecam/loop.py
"""
Live detection loop.

One loop owns one model session and one capture source and repeats
capture -> infer -> render on a background thread, either every
DETECT_INTERVAL seconds ("interval") or once per capture frame ("refresh").

This module also provides a live overlay window (run_live_window) that shows
the camera with the current overlay and status text.
"""

from __future__ import annotations

import time
import logging
import threading
from typing import Callable, List, Optional

import cv2
import numpy as np

from facecam.capture import CaptureSource
from facecam.config import Settings
from facecam.exceptions import CaptureError, ModelLoadError
from facecam.models import (
    Detection, ErrorReason, LoopState, LoopStatus, ModelConfig, SchedulePolicy,
)
from facecam.notify import Notifier
from facecam.overlay import OverlayRenderer, draw_status
from facecam.session import load_model

logger = logging.getLogger(__name__)


STATUS_MESSAGES = {
    LoopState.IDLE: "Stopped",
    LoopState.INITIALIZING: "Loading model...",
    LoopState.READY: "Model loaded. Camera active",
    LoopState.RUNNING: "Camera active",
}

ERROR_MESSAGES = {
    ErrorReason.PERMISSION_DENIED: "Camera permission denied",
    ErrorReason.DEVICE_NOT_FOUND: "No camera found",
    ErrorReason.DEVICE_BUSY: "Camera is busy (used by another application)",
    ErrorReason.MODEL_LOAD_FAILED: "Could not load the face model",
}


# -----------------------------------------------------------------------------
# DetectionLoop: background scheduler thread + explicit lifecycle
# -----------------------------------------------------------------------------
class DetectionLoop:
    """Capture -> infer -> render, with at most one inference in flight."""

    def __init__(self, settings: Settings,
                 session_factory: Callable[[ModelConfig], object] = load_model,
                 capture_factory: Callable[[Settings], object] = CaptureSource,
                 renderer: Optional[OverlayRenderer] = None,
                 notifier: Optional[Notifier] = None):
        self.s = settings
        self._session_factory = session_factory
        self._capture_factory = capture_factory
        self.renderer = renderer or OverlayRenderer(style=settings.RENDER_STYLE)
        self.notifier = notifier or Notifier(settings)

        self.session = None
        self.capture = None
        self._state = LoopState.IDLE
        self._reason: Optional[ErrorReason] = None
        self._error_detail: Optional[str] = None

        self._lifecycle_lock = threading.RLock()
        self._cycle_lock = threading.Lock()      # one inference in flight
        self._apply_lock = threading.RLock()     # stop() vs. publishing a cycle result
        self._wake = threading.Event()           # set to cancel the pending cycle
        self._thread: Optional[threading.Thread] = None
        self._generation = 0                     # bumped on stop; stale cycles compare against it
        self._active = False

        self._notified = False
        self._started_at: Optional[float] = None
        self._cycles = 0
        self._skipped = 0
        self._failures = 0
        self._last: List[Detection] = []
        self._last_frame: Optional[np.ndarray] = None

    # ---- state ----
    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def reason(self) -> Optional[ErrorReason]:
        return self._reason

    @property
    def notified(self) -> bool:
        return self._notified

    def status_message(self) -> str:
        if self._state == LoopState.ERROR and self._reason is not None:
            msg = ERROR_MESSAGES[self._reason]
            return f"{msg}: {self._error_detail}" if self._error_detail else msg
        msg = STATUS_MESSAGES[self._state]
        if self._state == LoopState.RUNNING:
            n = len(self._last)
            msg = f"{msg} - {n} face{'s' if n != 1 else ''}"
        return msg

    def status(self) -> LoopStatus:
        return LoopStatus(
            state=self._state,
            reason=self._reason,
            message=self.status_message(),
            cycles=self._cycles,
            skipped=self._skipped,
            failures=self._failures,
            last_detection_count=len(self._last),
            notified=self._notified,
            started_at=self._started_at,
            detections=list(self._last),
        )

    def _fail(self, reason: ErrorReason, detail: Optional[str]) -> LoopState:
        self._state = LoopState.ERROR
        self._reason = reason
        self._error_detail = detail
        logger.error(f"[loop] {ERROR_MESSAGES[reason]} ({detail})")
        return self._state

    # ---- lifecycle ----
    def start(self, schedule: bool = True) -> LoopState:
        """Load the model, open the camera and begin scheduling cycles.

        With schedule=False no scheduler thread is started and the caller
        drives cycles through run_cycle(). Fatal errors leave the loop in
        ERROR with a reason; nothing is retried.
        """
        with self._lifecycle_lock:
            if self._state not in (LoopState.IDLE, LoopState.ERROR):
                return self._state
            self._state = LoopState.INITIALIZING
            self._reason = None
            self._error_detail = None
            self._notified = False
            self._cycles = self._skipped = self._failures = 0
            self._last = []
            self._last_frame = None
            self._started_at = time.time()

            try:
                self.session = self._session_factory(self.s.session_config())
            except ModelLoadError as e:
                self.session = None
                return self._fail(ErrorReason.MODEL_LOAD_FAILED, str(e.details or e))
            except Exception as e:
                self.session = None
                logger.exception("[loop] unexpected model load failure")
                return self._fail(ErrorReason.MODEL_LOAD_FAILED, str(e))

            try:
                capture = self._capture_factory(self.s)
                capture.open()
                self.capture = capture
            except CaptureError as e:
                self.capture = None
                self._dispose_session()
                return self._fail(e.reason, str(e.details) if e.details else None)
            except Exception as e:
                self.capture = None
                self._dispose_session()
                logger.exception("[loop] unexpected capture failure")
                return self._fail(ErrorReason.DEVICE_NOT_FOUND, str(e))

            self._state = LoopState.READY
            self._active = True
            self._wake.clear()
            if schedule:
                gen = self._generation
                self._thread = threading.Thread(target=self._schedule_loop, args=(gen,),
                                                name="detection-loop", daemon=True)
                self._thread.start()
            logger.info(f"[loop] started policy={self.s.SCHEDULE_POLICY} "
                        f"variant={self.s.MODEL_VARIANT} style={self.renderer.style.value}")
            return self._state

    def stop(self) -> None:
        """Cancel the pending cycle, release the camera, dispose the model.

        Each step is attempted even if an earlier one fails. A cycle that is
        still waiting on inference will discard its result.
        """
        with self._lifecycle_lock:
            with self._apply_lock:
                self._active = False
                self._generation += 1
            self._wake.set()

            try:
                if self.capture is not None:
                    self.capture.release()
            except Exception:
                logger.exception("[loop] capture release failed")
            finally:
                self.capture = None

            self._dispose_session()

            t, self._thread = self._thread, None
            if t is not None and t is not threading.current_thread():
                t.join(timeout=self.s.STOP_TIMEOUT)
                if t.is_alive():
                    logger.warning("[loop] cycle still in flight after stop; its result will be discarded")

            if self._state != LoopState.IDLE:
                logger.info(f"[loop] stopped after {self._cycles} cycles")
            self._state = LoopState.IDLE
            self._reason = None
            self._error_detail = None

    def _dispose_session(self) -> None:
        try:
            if self.session is not None:
                self.session.dispose()
        except Exception:
            logger.exception("[loop] model dispose failed")
        finally:
            self.session = None

    # ---- scheduling ----
    def _period(self) -> float:
        if self.s.SCHEDULE_POLICY == SchedulePolicy.REFRESH.value:
            fps = getattr(self.capture, "fps", 0.0) or 30.0
            return 1.0 / fps
        return self.s.DETECT_INTERVAL

    def _schedule_loop(self, gen: int):
        while self._active and gen == self._generation:
            t0 = time.monotonic()
            self.run_cycle()
            # next cycle is scheduled from completion; overdue triggers are dropped, not queued
            elapsed = time.monotonic() - t0
            period = self._period()
            if elapsed > period:
                missed = int(elapsed // period)
                self._skipped += missed
                logger.debug(f"[loop] cycle took {elapsed:.3f}s; dropped {missed} trigger(s)")
            if self._wake.wait(max(0.0, period - elapsed)):
                break

    def run_cycle(self) -> bool:
        """One capture -> infer -> render pass. Returns True if a result was applied."""
        if not self._cycle_lock.acquire(blocking=False):
            self._skipped += 1
            logger.debug("[loop] previous cycle still in flight; trigger skipped")
            return False
        try:
            return self._cycle()
        finally:
            self._cycle_lock.release()

    def _cycle(self) -> bool:
        gen = self._generation
        session, capture = self.session, self.capture
        if not self._active or session is None or capture is None or not capture.ready:
            self._skipped += 1
            return False

        frame = capture.latest()
        if frame is None:
            self._skipped += 1
            return False
        if self._active and self._state == LoopState.READY:
            self._state = LoopState.RUNNING

        try:
            detections = list(session.infer(frame))
        except Exception:
            self._failures += 1
            logger.exception(f"[loop] inference failed (cycle {self._cycles + 1}); treating as no detection")
            detections = []

        h, w = frame.shape[:2]
        with self._apply_lock:
            if not self._current(gen):
                logger.debug("[loop] loop stopped during inference; result discarded")
                return False
            self.renderer.ensure_size(w, h)
            target = self.renderer.prepare(detections)
            # re-checked right before publishing; nothing below may outlive stop()
            if not self._current(gen):
                logger.debug("[loop] loop stopped while rendering; result discarded")
                return False
            if target is not None:
                self.renderer.commit(target, detections)
            self._last = detections
            self._last_frame = frame
            self._cycles += 1

            if detections and not self._notified:
                self._notified = True
                logger.info(f"[loop] first detection ({len(detections)} face(s)); sending greeting")
                try:
                    self.notifier.notify(frame, detections)
                except Exception:
                    logger.exception("[loop] greeting dispatch failed")
        return True

    def _current(self, gen: int) -> bool:
        return self._active and gen == self._generation

    # ---- display ----
    def latest_overlay(self, with_status: bool = True) -> Optional[np.ndarray]:
        """Most recent processed frame with the overlay blended on top, or None."""
        frame = self._last_frame
        if frame is None:
            return None
        out = self.renderer.composite(frame)
        if with_status:
            draw_status(out, self.status_message())
        return out


# -----------------------------------------------------------------------------
# Live camera window
# -----------------------------------------------------------------------------
def run_live_window(settings: Settings, loop: Optional[DetectionLoop] = None,
                    window: str = "facecam (q to quit)") -> LoopStatus:
    """
    Start a loop and show camera + overlay in an OpenCV window until 'q'.

    The window keeps refreshing from the capture between detection cycles so
    the video stays smooth with interval polling. Returns the final status.
    """
    loop = loop or DetectionLoop(settings)
    state = loop.start()
    if state == LoopState.ERROR:
        final = loop.status()
        loop.stop()
        raise RuntimeError(final.message)

    try:
        while loop.state in (LoopState.READY, LoopState.RUNNING):
            capture = loop.capture
            frame = capture.latest() if capture is not None else None
            if frame is not None:
                shown = loop.renderer.composite(frame)
                draw_status(shown, loop.status_message())
                cv2.imshow(window, shown)
            if (cv2.waitKey(15) & 0xFF) == ord("q"):
                break
        final = loop.status()
    finally:
        loop.stop()
        cv2.destroyAllWindows()
    return final
