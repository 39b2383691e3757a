from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from web_app import app

from .conftest import STANDING, raw_pose


@pytest.fixture
def client():
    return TestClient(app)


def frames_payload(n: int, **overrides):
    points = {**STANDING, **overrides}
    return [{"timestamp_ms": i * 80.0, "keypoints": raw_pose(points)} for i in range(n)]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_score_clean_recording(client):
    resp = client.post("/score", json={"front": frames_payload(12), "side": frames_payload(12)})
    assert resp.status_code == 200
    data = resp.json()
    assert data["tier"] == "Elite"
    assert data["flags"] == []
    assert data["mobility"] == 100


def test_score_short_recording_is_incomplete(client):
    resp = client.post("/score", json={"front": frames_payload(3), "side": frames_payload(12)})
    assert resp.status_code == 200
    assert resp.json()["tier"] == "Incomplete"
    assert resp.json()["injuryRisk"] is None


def test_score_flags_asymmetry(client):
    front = frames_payload(12, right_knee=(340.0, 355.0))
    resp = client.post("/score", json={"front": front, "side": frames_payload(12)})
    assert resp.json()["flags"] == ["Asymmetry"]


def test_score_rejects_bad_size(client):
    resp = client.post("/score", json={"width": 0, "front": [], "side": []})
    assert resp.status_code == 422


def test_websocket_session_flow(client):
    with client.websocket_connect("/ws/session") as ws:
        ws.send_json({"type": "config", "width": 640, "height": 480})
        ws.send_json({"type": "phase", "phase": "record_front"})
        assert ws.receive_json() == {"type": "phase", "phase": "record_front"}

        ws.send_json({"type": "pose", "timestamp_ms": 0, "keypoints": raw_pose()})
        update = ws.receive_json()
        assert update["type"] == "update"
        assert update["assessment_phase"] == "record_front"
        assert update["recorded"] is True
        assert update["rep_count"] == 0

        ws.send_json({"type": "pose", "timestamp_ms": 80, "keypoints": []})
        assert ws.receive_json() == {"type": "no_pose"}

        ws.send_json({"type": "finish"})
        msg = ws.receive_json()
        assert msg["type"] == "report"
        assert msg["report"]["tier"] == "Incomplete"


def test_websocket_rejects_unknown_messages(client):
    with client.websocket_connect("/ws/session") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["type"] == "error"
        ws.send_json({"type": "dance"})
        assert ws.receive_json()["type"] == "error"
        ws.send_json({"type": "phase", "phase": "warmup"})
        assert "unknown phase" in ws.receive_json()["detail"]
        ws.send_json({"type": "reset"})
        assert ws.receive_json() == {"type": "phase", "phase": "idle"}


def test_websocket_survives_malformed_messages(client):
    with client.websocket_connect("/ws/session") as ws:
        for text in ("[1, 2]", "42", '"pose"', "null"):
            ws.send_text(text)
            assert ws.receive_json() == {"type": "error", "detail": "message must be a json object"}

        ws.send_json({"type": "pose", "timestamp_ms": "soon", "keypoints": raw_pose()})
        assert "timestamp_ms" in ws.receive_json()["detail"]
        ws.send_json({"type": "pose", "timestamp_ms": [1], "keypoints": raw_pose()})
        assert ws.receive_json()["type"] == "error"
        ws.send_json({"type": "pose", "timestamp_ms": 0, "keypoints": {"nose": [1, 2]}})
        assert ws.receive_json()["type"] == "error"
        ws.send_json({"type": "pose", "timestamp_ms": 0, "keypoints": [{"name": [1], "x": 1, "y": 2}]})
        assert ws.receive_json() == {"type": "no_pose"}

        # The session is still alive afterwards.
        ws.send_json({"type": "phase", "phase": "record_front"})
        assert ws.receive_json() == {"type": "phase", "phase": "record_front"}
        ws.send_json({"type": "pose", "timestamp_ms": 40, "keypoints": raw_pose()})
        update = ws.receive_json()
        assert update["type"] == "update"
        assert update["recorded"] is True
