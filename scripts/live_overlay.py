"""Run the live detection loop in a desktop window.

Usage:
    uvicorn api.main:app --reload  # (separate, for the web client + API)
    python scripts/live_overlay.py --variant blazeface --policy refresh

Press 'q' to quit the window.
"""
from __future__ import annotations
import argparse
import logging

from facecam.config import Settings
from facecam.loop import run_live_window
from facecam.models import ModelVariant, RenderStyle, SchedulePolicy


def main(argv=None):
    p = argparse.ArgumentParser()
    p.add_argument("--camera", help="Camera index, video file or stream URL")
    p.add_argument("--variant", choices=[v.value for v in ModelVariant], help="Face model")
    p.add_argument("--max-faces", type=int, help="Maximum detections per frame")
    p.add_argument("--aux", action="store_true", help="Load the auxiliary model (iris / full-range)")
    p.add_argument("--policy", choices=[v.value for v in SchedulePolicy], help="Scheduling policy")
    p.add_argument("--interval", type=float, help="Seconds between cycles for the interval policy")
    p.add_argument("--style", choices=[v.value for v in RenderStyle], help="Overlay style")
    args = p.parse_args(argv)

    overrides = {}
    if args.camera is not None:
        overrides["CAMERA_SOURCE"] = args.camera
    if args.variant:
        overrides["MODEL_VARIANT"] = args.variant
    if args.max_faces:
        overrides["MAX_DETECTIONS"] = args.max_faces
    if args.aux:
        overrides["LOAD_AUXILIARY_MODEL"] = True
    if args.policy:
        overrides["SCHEDULE_POLICY"] = args.policy
    if args.interval:
        overrides["DETECT_INTERVAL"] = args.interval
    if args.style:
        overrides["RENDER_STYLE"] = args.style

    settings = Settings(**overrides)
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
    final = run_live_window(settings)
    print(f"{final.message} ({final.cycles} cycles, {final.failures} failures)")


if __name__ == '__main__':
    main()
