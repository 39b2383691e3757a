#!/usr/bin/env python3
"""
Overhead squat assessment: offline (front + side videos) or live (webcam).
Usage:
  Offline: python run.py --front front.mp4 --side side.mp4
  Rescore: python run.py --frames outputs/frames.json
  Live:    python run.py --live [--camera 0]
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

# Load .env so SQUAT_* overrides are available
try:
    from pathlib import Path
    from dotenv import load_dotenv
    load_dotenv()
    load_dotenv(Path(__file__).resolve().parent / ".env")
except ImportError:
    pass

from squatassess.config import SessionConfig
from squatassess.io_stream import Camera, video_frames
from squatassess.metrics import score_assessment
from squatassess.pose import create_pose_detector, process_frame
from squatassess.report import load_frames, write_report
from squatassess.session import AssessmentPhase, AssessmentSession, DetectionLoop

logger = logging.getLogger("squatassess.run")


def _record_video(session: AssessmentSession, video_path: str, phase: AssessmentPhase, pose) -> int:
    """Feed one video through the session while in a recording phase. Returns reps counted."""
    session.set_phase(phase)
    sized = False
    for frame_bgr, t_ms in video_frames(video_path, session.config.detection_interval_sec):
        if not sized:
            h, w = frame_bgr.shape[:2]
            session.set_frame_size(w, h)
            sized = True
        try:
            raw = process_frame(frame_bgr, pose)
        except Exception as e:
            logger.warning("pose estimation failed at %.0fms, skipping frame: %s", t_ms, e)
            continue
        session.process(raw, t_ms)
    session.set_phase(AssessmentPhase.PAUSE)
    return session.rep_count


def run_offline(front_path: str, side_path: str, output_dir: str = "outputs") -> dict:
    """Process front and side videos: pose -> smoothing -> reps -> scoring -> report."""
    config = SessionConfig.from_env()
    session = AssessmentSession(config)
    pose = create_pose_detector()
    rep_counts = {
        "front": _record_video(session, front_path, AssessmentPhase.RECORD_FRONT, pose),
        "side": _record_video(session, side_path, AssessmentPhase.RECORD_SIDE, pose),
    }
    report = session.finish()
    return write_report(
        report, output_dir, session.front_frames, session.side_frames,
        source="offline", rep_counts=rep_counts,
    )


def rescore(frames_path: str, output_dir: str = "outputs") -> dict:
    """Score a previously saved frames.json with the current thresholds."""
    config = SessionConfig.from_env()
    front, side = load_frames(frames_path)
    report = score_assessment(front, side, config.scoring)
    return write_report(report, output_dir, front, side, source=f"rescore:{frames_path}")


# Live flow: space advances through the phases, r = retake, q = quit.
_NEXT_PHASE = {
    AssessmentPhase.IDLE: AssessmentPhase.RECORD_FRONT,
    AssessmentPhase.RECORD_FRONT: AssessmentPhase.PAUSE,
    AssessmentPhase.PAUSE: AssessmentPhase.RECORD_SIDE,
}


async def run_live(camera_id: int = 0, output_dir: str = "outputs") -> Optional[dict]:
    import cv2

    from squatassess.overlay import draw_live_overlay
    from squatassess.pose import PoseOracle

    config = SessionConfig.from_env()
    camera = Camera(camera_id)
    w, h = camera.size
    oracle = PoseOracle()
    win_name = "Squat Assessment (space=next, r=retake, q=quit)"
    cv2.namedWindow(win_name, cv2.WINDOW_NORMAL)
    message: Optional[str] = "Press space to start the front view"

    def _on_view_complete(view: str) -> None:
        nonlocal message
        if view == "front":
            session.set_phase(AssessmentPhase.PAUSE)
            message = "Turn to your right side, then press space"
        else:
            message = "Side view done, computing..."

    session = AssessmentSession(config, w, h, on_view_complete=_on_view_complete)
    latest = {"update": None}

    async def _estimate():
        grabbed = await asyncio.get_running_loop().run_in_executor(None, camera.read)
        if grabbed is None:
            return None
        return await oracle.estimate(grabbed[0])

    def _on_update(update) -> None:
        latest["update"] = update

    session.on_update = _on_update
    loop = DetectionLoop(session, _estimate)
    loop.start()
    report_data = None
    try:
        while True:
            await asyncio.sleep(1.0 / 30)
            if camera.last_frame is None:
                continue
            out = camera.last_frame.copy()
            update = latest["update"]
            draw_live_overlay(
                out,
                update.frame if update else None,
                session.phase.value,
                session.rep_count,
                config.detector.target_reps,
                update.phase.value if update else "-",
                len(session.front_frames),
                len(session.side_frames),
                message,
            )
            cv2.imshow(win_name, out)
            key = cv2.waitKey(1) & 0xFF
            if key == ord("q"):
                break
            if key == ord("r"):
                session.reset()
                latest["update"] = None
                message = "Retake: press space to start the front view"
            if key == ord(" ") and session.phase in _NEXT_PHASE:
                session.set_phase(_NEXT_PHASE[session.phase])
                message = None
            if session.phase is AssessmentPhase.RECORD_SIDE and "side" in session.views_completed:
                break
    finally:
        await loop.stop()
        camera.release()
        oracle.close()
        cv2.destroyAllWindows()

    if session.front_frames or session.side_frames:
        report = session.finish()
        report_data = write_report(
            report, output_dir, session.front_frames, session.side_frames,
            source="live", rep_counts=session.rep_counts,
        )
    return report_data


def main() -> None:
    ap = argparse.ArgumentParser(description="Overhead squat assessment: two videos or live webcam")
    ap.add_argument("--front", type=str, default=None, help="Front-view video (offline mode)")
    ap.add_argument("--side", type=str, default=None, help="Side-view video (offline mode)")
    ap.add_argument("--frames", type=str, default=None, help="Rescore a saved frames.json")
    ap.add_argument("--live", action="store_true", help="Use live webcam")
    ap.add_argument("--camera", type=int, default=0, help="Camera device id (default 0)")
    ap.add_argument("--output-dir", type=str, default="outputs", help="Output directory")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    modes = sum([bool(args.live), bool(args.front or args.side), bool(args.frames)])
    if modes != 1:
        print("Error: provide exactly one of --front/--side, --frames or --live", file=sys.stderr)
        sys.exit(1)

    if args.live:
        data = asyncio.run(run_live(camera_id=args.camera, output_dir=args.output_dir))
    elif args.frames:
        if not os.path.isfile(args.frames):
            print(f"Error: frames file not found: {args.frames}", file=sys.stderr)
            sys.exit(1)
        data = rescore(args.frames, output_dir=args.output_dir)
    else:
        for label, path in (("--front", args.front), ("--side", args.side)):
            if not path or not os.path.isfile(path):
                print(f"Error: {label} video not found: {path}", file=sys.stderr)
                sys.exit(1)
        data = run_offline(args.front, args.side, output_dir=args.output_dir)

    if data is None:
        print("No frames recorded; no report written.")
        return
    print(
        f"Done. Tier: {data['tier']}. Flags: {', '.join(data['flags']) or 'none'}. "
        f"Report: {args.output_dir}/report.html"
    )


if __name__ == "__main__":
    main()
