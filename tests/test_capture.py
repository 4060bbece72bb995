import numpy as np
import pytest

import facecam.capture as capture
from facecam.config import Settings
from facecam.exceptions import CaptureError
from facecam.models import ErrorReason


class DummyCap:
    def __init__(self, opened=True, frames=True):
        self.opened = opened
        self.frames = frames
        self.props = {}
        self.released = False
    def isOpened(self): return self.opened
    def set(self, prop, value):
        self.props[prop] = value
        return True
    def get(self, prop): return 25.0
    def read(self):
        if not self.frames:
            return False, None
        return True, np.zeros((48, 64, 3), dtype=np.uint8)
    def release(self): self.released = True


def test_open_reads_frames_and_releases(monkeypatch):
    cap = DummyCap()
    monkeypatch.setattr(capture.cv2, "VideoCapture", lambda src: cap)
    src = capture.CaptureSource(Settings(CAMERA_SOURCE=None, CAMERA_INDEX=0, CAPTURE_WIDTH=640, CAPTURE_HEIGHT=480))
    src.open()
    try:
        assert src.ready
        assert src.size == (64, 48)
        assert src.fps == 25.0
        assert src.latest().shape == (48, 64, 3)
        assert cap.props[capture.cv2.CAP_PROP_FRAME_WIDTH] == 640
    finally:
        src.release()
    assert cap.released
    assert not src.ready
    assert src.latest() is None


def test_open_failure_raises_classified_reason(monkeypatch):
    monkeypatch.setattr(capture.cv2, "VideoCapture", lambda src: DummyCap(opened=False))
    monkeypatch.setattr(capture, "classify_open_failure", lambda src: ErrorReason.PERMISSION_DENIED)
    src = capture.CaptureSource(Settings(CAMERA_SOURCE=None, CAMERA_INDEX=3))
    with pytest.raises(CaptureError) as ei:
        src.open()
    assert ei.value.reason == ErrorReason.PERMISSION_DENIED


def test_silent_device_is_busy(monkeypatch):
    cap = DummyCap(frames=False)
    monkeypatch.setattr(capture.cv2, "VideoCapture", lambda src: cap)
    src = capture.CaptureSource(Settings(CAMERA_SOURCE=None))
    with pytest.raises(CaptureError) as ei:
        src.open(wait_first_frame=0.05)
    assert ei.value.reason == ErrorReason.DEVICE_BUSY
    assert cap.released


def test_classify_missing_denied_and_busy_paths(tmp_path, monkeypatch):
    assert capture.classify_open_failure(str(tmp_path / "nope.mp4")) == ErrorReason.DEVICE_NOT_FOUND
    assert capture.classify_open_failure("rtsp://camera.local/stream") == ErrorReason.DEVICE_NOT_FOUND

    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"\x00")
    monkeypatch.setattr(capture.os, "access", lambda path, mode: False)
    assert capture.classify_open_failure(str(clip)) == ErrorReason.PERMISSION_DENIED
    monkeypatch.setattr(capture.os, "access", lambda path, mode: True)
    assert capture.classify_open_failure(str(clip)) == ErrorReason.DEVICE_BUSY


def test_classify_device_index_on_linux(monkeypatch):
    monkeypatch.setattr(capture.sys, "platform", "linux")
    monkeypatch.setattr(capture.os.path, "exists", lambda p: p == "/dev/video1")
    monkeypatch.setattr(capture.os, "access", lambda p, mode: False)
    assert capture.classify_open_failure(0) == ErrorReason.DEVICE_NOT_FOUND
    assert capture.classify_open_failure(1) == ErrorReason.PERMISSION_DENIED
