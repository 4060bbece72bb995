import threading
import time

import numpy as np
import pytest

from facecam.config import Settings
from facecam.exceptions import CaptureError


class ScriptedSession:
    """Returns scripted detections per call; an Exception item is raised instead."""
    def __init__(self, script=None, default=None, gate=None, delay=0.0, events=None):
        self.script = list(script or [])
        self.default = default if default is not None else []
        self.gate = gate            # threading.Event to hold infer() mid-flight
        self.delay = delay
        self.events = events        # shared list recording teardown order
        self.entered = threading.Event()
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.disposed = 0
        self._lock = threading.Lock()

    def infer(self, frame):
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.entered.set()
            if self.gate is not None:
                self.gate.wait(5)
            if self.delay:
                time.sleep(self.delay)
            item = self.script.pop(0) if self.script else self.default
            if isinstance(item, Exception):
                raise item
            return list(item)
        finally:
            with self._lock:
                self.in_flight -= 1

    def dispose(self):
        self.disposed += 1
        if self.events is not None:
            self.events.append("dispose")


class FakeCapture:
    def __init__(self, settings=None, frame=None, error=None, fps=30.0, events=None):
        self.frame = frame if frame is not None else np.zeros((120, 160, 3), dtype=np.uint8)
        self.error = error
        self.opened = 0
        self.released = 0
        self.fps = fps
        self.events = events

    def open(self):
        self.opened += 1
        if self.error is not None:
            raise self.error
        return self

    @property
    def ready(self):
        return self.opened > 0 and self.released == 0

    def latest(self):
        return self.frame.copy() if self.ready else None

    def release(self):
        self.released += 1
        if self.events is not None:
            self.events.append("release")


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, frame, detections):
        self.calls.append(list(detections))


@pytest.fixture
def settings():
    return Settings(NOTIFY_URL="", DETECT_INTERVAL=60, STOP_TIMEOUT=0.5)


@pytest.fixture
def fake_capture():
    return FakeCapture()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def denied_capture():
    from facecam.models import ErrorReason
    return FakeCapture(error=CaptureError(ErrorReason.PERMISSION_DENIED, 0))
