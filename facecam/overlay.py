"""Overlay drawing on a transparent surface aligned with the video frame.

- OverlayRenderer.render: draw every detection (boxes or mesh points) onto a fresh surface and swap it in
- OverlayRenderer.composite: blend the surface onto a BGR frame for display
- draw_status: status text banner in the bottom-left corner
"""
from __future__ import annotations
import logging
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from facecam.models import BoxDetection, Detection, LandmarkDetection, RenderStyle

logger = logging.getLogger(__name__)


class OverlayRenderer:
    """Owns a BGRA surface the size of the native frame.

    The surface is only allocated once the frame size is known; until then
    render() reports "not ready" and draws nothing.
    """

    def __init__(self,
                 style: RenderStyle | str = RenderStyle.BOX,
                 color: Tuple[int, int, int] = (0, 255, 0),
                 thickness: int = 2,
                 point_radius: int = 1):
        self.style = RenderStyle(style)
        self.color = (int(color[0]), int(color[1]), int(color[2]), 255)
        self.thickness = int(thickness)
        self.point_radius = int(point_radius)
        self.surface: Optional[np.ndarray] = None
        self.drawn: List[Detection] = []

    @property
    def size(self) -> Optional[Tuple[int, int]]:
        if self.surface is None:
            return None
        h, w = self.surface.shape[:2]
        return w, h

    def ensure_size(self, width: int, height: int) -> bool:
        """(Re)allocate the surface when the native size differs. Returns True if resized."""
        if width <= 0 or height <= 0:
            return False
        if self.size == (width, height):
            return False
        logger.debug(f"[overlay] surface resize {self.size} -> {(width, height)}")
        self.surface = np.zeros((height, width, 4), dtype=np.uint8)
        self.drawn = []
        return True

    def clear(self) -> None:
        if self.surface is not None:
            self.surface = np.zeros_like(self.surface)
        self.drawn = []

    def prepare(self, detections: Sequence[Detection]) -> Optional[np.ndarray]:
        """Draw detections onto a fresh surface without publishing it.

        Returns None while the size is unknown.
        """
        if self.surface is None:
            return None
        target = np.zeros_like(self.surface)
        for det in detections:
            if isinstance(det, LandmarkDetection) and self.style == RenderStyle.MESH:
                self._draw_points(target, det.points)
            else:
                self._draw_box(target, det.bounding_box())
        return target

    def commit(self, target: np.ndarray, detections: Sequence[Detection]) -> None:
        # readers holding the previous surface keep a complete frame
        self.surface = target
        self.drawn = list(detections)

    def render(self, detections: Sequence[Detection]) -> bool:
        """Redraw the whole surface for this cycle. Returns False when not ready."""
        target = self.prepare(detections)
        if target is None:
            logger.debug("[overlay] surface not ready; skipping render")
            return False
        self.commit(target, detections)
        return True

    def _draw_box(self, target: np.ndarray, box: BoxDetection) -> None:
        h, w = target.shape[:2]
        x, y = int(round(box.x)), int(round(box.y))
        bw, bh = int(round(box.width)), int(round(box.height))
        if bw <= 0 or bh <= 0:
            return
        if x + bw < 0 or y + bh < 0 or x >= w or y >= h:
            return
        # cv2 clips; off-surface edges are simply not drawn
        cv2.rectangle(target, (x, y), (x + bw, y + bh), self.color, self.thickness)

    def _draw_points(self, target: np.ndarray, points) -> None:
        h, w = target.shape[:2]
        for px, py in points:
            ix, iy = int(round(px)), int(round(py))
            if 0 <= ix < w and 0 <= iy < h:
                cv2.circle(target, (ix, iy), self.point_radius, self.color, -1)

    def composite(self, frame: np.ndarray) -> np.ndarray:
        """Return a copy of `frame` with the overlay blended on top."""
        out = frame.copy()
        if self.surface is None:
            return out
        fh, fw = out.shape[:2]
        overlay = self.surface
        if overlay.shape[:2] != (fh, fw):
            overlay = cv2.resize(overlay, (fw, fh), interpolation=cv2.INTER_NEAREST)
        alpha = overlay[:, :, 3:4].astype(np.float32) / 255.0
        blended = out.astype(np.float32) * (1.0 - alpha) + overlay[:, :, :3].astype(np.float32) * alpha
        return blended.astype(np.uint8)


def draw_status(frame: np.ndarray, text: str) -> np.ndarray:
    """Draw a status banner on a frame (in-place modified and returned)."""
    if not text:
        return frame
    h = frame.shape[0]
    (tw, th), base = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 1)
    y0 = max(0, h - th - base - 10)
    cv2.rectangle(frame, (5, y0), (5 + tw + 10, h - 5), (0, 0, 0), -1)
    cv2.putText(frame, text, (10, h - base - 7), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1, cv2.LINE_AA)
    return frame
