from __future__ import annotations

import json
import logging
from typing import Any

# Ensure session and scoring logs are visible when running under uvicorn
logging.getLogger("squatassess.session").setLevel(logging.INFO)
logging.getLogger("squatassess.metrics").setLevel(logging.INFO)
logging.getLogger("squatassess.reps").setLevel(logging.INFO)

from fastapi import FastAPI
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from squatassess.config import SessionConfig
from squatassess.keypoints import frame_from_detection
from squatassess.metrics import score_assessment
from squatassess.session import AssessmentSession

logger = logging.getLogger("squatassess.web")

app = FastAPI(title="Overhead Squat Assessment")

_CONFIG = SessionConfig.from_env()


class KeypointIn(BaseModel):
    name: str
    x: float
    y: float
    score: float = 1.0


class FrameIn(BaseModel):
    timestamp_ms: float = 0.0
    keypoints: list[KeypointIn] = Field(default_factory=list)


class ScoreRequest(BaseModel):
    width: float = Field(640.0, gt=0)
    height: float = Field(480.0, gt=0)
    front: list[FrameIn]
    side: list[FrameIn]


def _to_frames(frames: list[FrameIn], width: float, height: float) -> list:
    out = []
    for f in frames:
        frame = frame_from_detection(
            [kp.model_dump() for kp in f.keypoints], width, height, f.timestamp_ms
        )
        if frame is not None:
            out.append(frame)
    return out


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/score")
def score(req: ScoreRequest) -> dict[str, Any]:
    """Score two recorded views. Short buffers return the Incomplete report, not an error."""
    front = _to_frames(req.front, req.width, req.height)
    side = _to_frames(req.side, req.width, req.height)
    report = score_assessment(front, side, _CONFIG.scoring)
    return report.to_dict()


def _error(detail: str) -> str:
    return json.dumps({"type": "error", "detail": detail})


@app.websocket("/ws/session")
async def session_socket(websocket: WebSocket) -> None:
    """
    Live assessment driven by a browser-side pose model.
    Client messages:
      {"type": "config", "width": W, "height": H}
      {"type": "phase", "phase": "record_front"}
      {"type": "pose", "timestamp_ms": T, "keypoints": [{name, x, y, score}, ...]}
      {"type": "reset"}
      {"type": "finish"}
    """
    await websocket.accept()
    outbox: list[dict[str, Any]] = []

    def _on_view_complete(view: str) -> None:
        outbox.append({"type": "view_complete", "view": view})

    session = AssessmentSession(_CONFIG, on_view_complete=_on_view_complete)
    logger.info("live: session started")
    frames_in = 0
    try:
        while True:
            msg = await websocket.receive_text()
            try:
                payload = json.loads(msg)
            except json.JSONDecodeError:
                await websocket.send_text(_error("invalid json"))
                continue
            if not isinstance(payload, dict):
                await websocket.send_text(_error("message must be a json object"))
                continue
            kind = payload.get("type")
            if kind == "config":
                try:
                    session.set_frame_size(float(payload["width"]), float(payload["height"]))
                except (KeyError, TypeError, ValueError):
                    await websocket.send_text(_error("config needs numeric width and height"))
                continue
            if kind == "phase":
                try:
                    session.set_phase(payload.get("phase"))
                except ValueError:
                    await websocket.send_text(_error(f"unknown phase: {payload.get('phase')!r}"))
                    continue
                await websocket.send_text(json.dumps({"type": "phase", "phase": session.phase.value}))
                continue
            if kind == "reset":
                session.reset()
                await websocket.send_text(json.dumps({"type": "phase", "phase": session.phase.value}))
                continue
            if kind == "finish":
                report = session.finish()
                logger.info(
                    "live: finished (frames=%s front=%s side=%s tier=%s)",
                    frames_in, len(session.front_frames), len(session.side_frames), report.tier.label,
                )
                await websocket.send_text(json.dumps({"type": "report", "report": report.to_dict()}))
                await websocket.close()
                return
            if kind != "pose":
                await websocket.send_text(_error(f"unknown message type: {kind!r}"))
                continue

            try:
                timestamp_ms = float(payload.get("timestamp_ms") or 0.0)
            except (TypeError, ValueError):
                await websocket.send_text(_error("pose needs a numeric timestamp_ms"))
                continue
            keypoints = payload.get("keypoints")
            if keypoints is not None and not isinstance(keypoints, list):
                await websocket.send_text(_error("pose keypoints must be a list"))
                continue
            frames_in += 1
            update = session.process(keypoints, timestamp_ms)
            if update is None:
                await websocket.send_text(json.dumps({"type": "no_pose"}))
            else:
                await websocket.send_text(json.dumps(update.to_dict()))
            while outbox:
                await websocket.send_text(json.dumps(outbox.pop(0)))
    except WebSocketDisconnect:
        logger.info("live: client disconnected (frames=%s, rep_count=%s)", frames_in, session.rep_count)
        session.reset()
        return


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("web_app:app", host="0.0.0.0", port=8000, reload=True)
