"""
Greeting side-channel.

The first detection of a loop triggers one greeting: a JSON `{"text": ...}`
POST and, optionally, a short microphone clip uploaded as multipart. Delivery
runs off the detection loop and every failure is logged only.
"""
from __future__ import annotations

import io
import logging
import threading
from typing import Callable, Optional, Sequence

import httpx
import numpy as np
import soundfile as sf

from facecam.config import Settings
from facecam.models import Detection

logger = logging.getLogger(__name__)

GREETING_MESSAGES = {
    "happy": "Great to see you smiling! Ready to build something cool?",
    "sad": "Even cloudy days can end with a great sunset.",
    "neutral": "Hi there! How are you?",
}


def greeting_for(emotion: Optional[str]) -> str:
    return GREETING_MESSAGES.get((emotion or "").lower(), GREETING_MESSAGES["neutral"])


def _thread_dispatch(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, name="greeting", daemon=True).start()


class Notifier:
    """One greeting per call to notify(); the loop decides when (once per lifetime)."""

    def __init__(self, settings: Settings,
                 client: Optional[httpx.Client] = None,
                 dispatch: Callable[[Callable[[], None]], None] = _thread_dispatch):
        self.s = settings
        self._client = client
        self._dispatch = dispatch

    def notify(self, frame: Optional[np.ndarray], detections: Sequence[Detection]) -> None:
        """Hand the greeting to the dispatcher and return immediately."""
        crop = _crop_first(frame, detections) if self.s.GREETING_EMOTION else None
        self._dispatch(lambda: self._deliver(crop))

    def _deliver(self, crop: Optional[np.ndarray]) -> None:
        # runs on a bare thread; nothing may escape it
        try:
            self._send_greeting(crop)
        except Exception:
            logger.exception("[notify] greeting delivery failed")

    def _send_greeting(self, crop: Optional[np.ndarray]) -> None:
        emotion = detect_emotion(crop) if crop is not None else None
        self.send_text(greeting_for(emotion))
        if self.s.AUDIO_CLIP_SECONDS > 0 and self.s.AUDIO_UPLOAD_URL:
            try:
                clip = record_clip(self.s.AUDIO_CLIP_SECONDS, self.s.AUDIO_SAMPLE_RATE)
            except Exception:
                logger.exception("[notify] audio capture failed; skipping upload")
                return
            self.send_audio(clip)

    # ---- HTTP ----
    def _post(self, url: str, **kwargs) -> Optional[httpx.Response]:
        try:
            if self._client is not None:
                resp = self._client.post(url, **kwargs)
            else:
                with httpx.Client(timeout=self.s.NOTIFY_TIMEOUT) as client:
                    resp = client.post(url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"[notify] POST {url} failed: {e}")
            return None
        if resp.is_success:
            logger.info(f"[notify] POST {url} -> {resp.status_code} {resp.text[:200]}")
        else:
            logger.warning(f"[notify] POST {url} -> {resp.status_code} {resp.text[:200]}")
        return resp

    def send_text(self, text: str) -> Optional[httpx.Response]:
        if not self.s.NOTIFY_URL:
            logger.info(f"[notify] NOTIFY_URL not set; greeting not sent: {text!r}")
            return None
        return self._post(self.s.NOTIFY_URL, json={"text": text})

    def send_audio(self, wav_bytes: bytes) -> Optional[httpx.Response]:
        if not self.s.AUDIO_UPLOAD_URL:
            return None
        return self._post(self.s.AUDIO_UPLOAD_URL,
                          files={"file": ("greeting.wav", wav_bytes, "audio/wav")})


# ---- helpers ----
def _crop_first(frame: Optional[np.ndarray], detections: Sequence[Detection]) -> Optional[np.ndarray]:
    if frame is None or not detections:
        return None
    box = detections[0].bounding_box()
    h, w = frame.shape[:2]
    x0, y0 = max(0, int(box.x)), max(0, int(box.y))
    x1, y1 = min(w, int(box.x + box.width)), min(h, int(box.y + box.height))
    if x1 <= x0 or y1 <= y0:
        return frame.copy()
    return frame[y0:y1, x0:x1].copy()


def detect_emotion(chip: np.ndarray) -> Optional[str]:
    """Dominant emotion of a face crop with DeepFace; None if it cannot tell."""
    try:
        from deepface import DeepFace
        res = DeepFace.analyze(chip, actions=["emotion"], enforce_detection=False,
                               detector_backend="skip")
    except Exception:
        logger.exception("[notify] emotion analysis failed; using neutral greeting")
        return None
    res = res if isinstance(res, list) else [res]
    r0 = res[0] if res else {}
    emo = r0.get("dominant_emotion")
    if emo is None and isinstance(r0.get("emotion"), dict) and r0["emotion"]:
        probs = r0["emotion"]
        emo = max(probs, key=probs.get)
    return emo


def record_clip(seconds: float, sample_rate: int) -> bytes:
    """Record a mono clip from the default microphone and return it as WAV bytes."""
    import sounddevice as sd  # PortAudio is only needed when a clip is requested

    frames = int(seconds * sample_rate)
    logger.debug(f"[notify] recording {seconds:.1f}s @ {sample_rate}Hz")
    audio = sd.rec(frames, samplerate=sample_rate, channels=1, dtype="float32")
    sd.wait()
    buf = io.BytesIO()
    sf.write(buf, np.asarray(audio).reshape(-1), sample_rate, format="WAV")
    return buf.getvalue()
