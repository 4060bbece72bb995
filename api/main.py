"""
FastAPI application entrypoint: loop control API plus the built web client.
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse

import api.routes as routes
from api.routes import router

logging.basicConfig(
    level=getattr(logging, routes.settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com; "
    "font-src 'self' https://fonts.gstatic.com; "
    "script-src 'self' 'unsafe-eval'; "
    "img-src 'self' data: blob:; "
    "connect-src 'self' https://tfhub.dev https://storage.googleapis.com;"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # the camera and model must not outlive the server
    if routes.live_loop is not None:
        logger.info("[api] shutting down live loop")
        routes.live_loop.stop()


app = FastAPI(title="facecam", version="1.0.0", lifespan=lifespan)


@app.middleware("http")
async def content_security_policy(request: Request, call_next):
    response = await call_next(request)
    response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
    return response


app.include_router(router)


@app.get("/health")
def health() -> dict:
    """
    Health check endpoint.

    Returns:
        dict: Simple status payload.
    """
    return {"status": "ok"}


def _static_root() -> Path:
    return Path(routes.settings.STATIC_DIR).resolve()


@app.get("/{full_path:path}", include_in_schema=False)
def web_client(full_path: str):
    """Serve a built asset if it exists, otherwise the single-page entry document."""
    root = _static_root()
    if full_path:
        candidate = (root / full_path).resolve()
        if candidate.is_relative_to(root) and candidate.is_file():
            return FileResponse(candidate)
    index = root / "index.html"
    if not index.is_file():
        raise HTTPException(status_code=404, detail="Web client not built")
    return FileResponse(index)
