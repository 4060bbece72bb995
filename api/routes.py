"""
REST endpoints for the live detection loop.
"""
import logging
import threading

import cv2
from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from facecam.config import Settings
from facecam.loop import DetectionLoop
from facecam.models import LoopState, LoopStatus

router = APIRouter()
settings = Settings()
logger = logging.getLogger(__name__)

# one loop per process: it owns the camera exclusively
loop_factory = DetectionLoop
live_loop: DetectionLoop | None = None
_live_lock = threading.Lock()


def _get_loop() -> DetectionLoop:
    global live_loop
    if live_loop is None:
        live_loop = loop_factory(settings)
    return live_loop


@router.post("/live/start")
def live_start():
    """
    Load the model, open the camera and start detecting.

    Returns:
        dict: `status` is "started", "already_running" or "error"; `loop` is the LoopStatus.
    """
    with _live_lock:
        loop = _get_loop()
        if loop.state in (LoopState.READY, LoopState.RUNNING):
            return {"status": "already_running", "loop": loop.status().model_dump(mode="json")}
        logger.debug("[api] /live/start")
        state = loop.start()
        body = loop.status().model_dump(mode="json")
    if state == LoopState.ERROR:
        logger.warning(f"[api] live start failed: {body['message']}")
        return {"status": "error", "loop": body}
    return {"status": "started", "loop": body}


@router.get("/live/status", response_model=LoopStatus)
def live_status():
    return _get_loop().status()


@router.post("/live/stop")
def live_stop():
    with _live_lock:
        loop = _get_loop()
        if loop.state == LoopState.IDLE:
            return {"status": "not_running"}
        loop.stop()
    return {"status": "stopped"}


@router.get("/live/frame.jpg")
def live_frame():
    """Latest processed frame with the overlay, JPEG encoded."""
    frame = _get_loop().latest_overlay()
    if frame is None:
        raise HTTPException(status_code=404, detail="No frame processed yet")
    ok, buf = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, 85])
    if not ok:
        raise HTTPException(status_code=500, detail="JPEG encoding failed")
    return Response(content=buf.tobytes(), media_type="image/jpeg",
                    headers={"Cache-Control": "no-store"})
