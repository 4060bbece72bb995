import io
import json
import sys
import types

import httpx
import numpy as np
import soundfile as sf

import facecam.notify as notify
from facecam.config import Settings
from facecam.models import BoxDetection

BOX = BoxDetection(x=2, y=2, width=10, height=10)


def inline(fn):
    fn()


def make_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_greeting_posts_json_text():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    s = Settings(NOTIFY_URL="http://greeter.test/ws-message", AUDIO_CLIP_SECONDS=0, GREETING_EMOTION=False)
    n = notify.Notifier(s, client=make_client(handler), dispatch=inline)
    n.notify(np.zeros((20, 20, 3), dtype=np.uint8), [BOX])

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert str(seen[0].url) == "http://greeter.test/ws-message"
    assert json.loads(seen[0].content) == {"text": notify.GREETING_MESSAGES["neutral"]}


def test_network_error_and_bad_status_are_only_logged(caplog):
    def down(request):
        raise httpx.ConnectError("unreachable", request=request)

    s = Settings(NOTIFY_URL="http://greeter.test/ws-message")
    n = notify.Notifier(s, client=make_client(down), dispatch=inline)
    assert n.send_text("hi") is None
    assert "failed" in caplog.text

    n2 = notify.Notifier(s, client=make_client(lambda r: httpx.Response(503, text="busy")), dispatch=inline)
    resp = n2.send_text("hi")
    assert resp.status_code == 503


def test_no_url_means_no_request():
    def handler(request):
        raise AssertionError("should not be called")

    n = notify.Notifier(Settings(NOTIFY_URL=""), client=make_client(handler), dispatch=inline)
    n.notify(None, [BOX])


def test_emotion_keyed_greeting(monkeypatch):
    class DF:
        @staticmethod
        def analyze(img, actions=None, enforce_detection=None, detector_backend=None):
            assert img.shape[:2] == (10, 10)
            return [{"emotion": {"happy": 0.8, "sad": 0.1}}]
    monkeypatch.setitem(sys.modules, "deepface", types.SimpleNamespace(DeepFace=DF))

    sent = []
    s = Settings(NOTIFY_URL="http://greeter.test/ws-message", GREETING_EMOTION=True)
    n = notify.Notifier(s, client=make_client(lambda r: sent.append(json.loads(r.content)) or httpx.Response(200)),
                        dispatch=inline)
    n.notify(np.zeros((40, 40, 3), dtype=np.uint8), [BOX])
    assert sent == [{"text": notify.GREETING_MESSAGES["happy"]}]


def test_greeting_for_unknown_emotion_is_neutral():
    assert notify.greeting_for("surprise") == notify.GREETING_MESSAGES["neutral"]
    assert notify.greeting_for(None) == notify.GREETING_MESSAGES["neutral"]


def test_audio_clip_uploaded_as_multipart(monkeypatch):
    fake_sd = types.SimpleNamespace(
        rec=lambda frames, samplerate, channels, dtype: np.zeros((frames, channels), dtype="float32"),
        wait=lambda: None,
    )
    monkeypatch.setitem(sys.modules, "sounddevice", fake_sd)

    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, text="ok")

    s = Settings(NOTIFY_URL="http://greeter.test/ws-message", AUDIO_UPLOAD_URL="http://greeter.test/audio",
                 AUDIO_CLIP_SECONDS=0.5, AUDIO_SAMPLE_RATE=8000)
    n = notify.Notifier(s, client=make_client(handler), dispatch=inline)
    n.notify(None, [BOX])

    assert [str(r.url) for r in requests] == ["http://greeter.test/ws-message", "http://greeter.test/audio"]
    assert requests[1].headers["content-type"].startswith("multipart/form-data")
    assert b"greeting.wav" in requests[1].content


def test_record_clip_returns_wav(monkeypatch):
    fake_sd = types.SimpleNamespace(
        rec=lambda frames, samplerate, channels, dtype: np.zeros((frames, channels), dtype="float32"),
        wait=lambda: None,
    )
    monkeypatch.setitem(sys.modules, "sounddevice", fake_sd)
    data = notify.record_clip(0.25, 16000)
    audio, sr = sf.read(io.BytesIO(data))
    assert sr == 16000 and len(audio) == 4000


def test_malformed_url_is_logged_not_raised(caplog):
    def handler(request):
        raise AssertionError("should not be called")

    s = Settings(NOTIFY_URL="http://greeter.test:abc/ws-message", AUDIO_CLIP_SECONDS=0, GREETING_EMOTION=False)
    n = notify.Notifier(s, client=make_client(handler), dispatch=inline)
    assert n.send_text("hi") is None
    n.notify(None, [BOX])
    assert "greeter.test:abc" in caplog.text


def test_unexpected_delivery_error_stays_on_greeting_thread(caplog, monkeypatch):
    s = Settings(NOTIFY_URL="http://greeter.test/ws-message", GREETING_EMOTION=False)
    n = notify.Notifier(s, client=make_client(lambda r: httpx.Response(200)), dispatch=inline)

    def broken(text):
        raise ValueError("encoder exploded")
    monkeypatch.setattr(n, "send_text", broken)

    n.notify(None, [BOX])
    assert "greeting delivery failed" in caplog.text
