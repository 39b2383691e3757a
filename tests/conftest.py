from __future__ import annotations

import math
from typing import Optional

import pytest

from squatassess.keypoints import Frame, Keypoint

# Upright overhead-squat stance in a 640x480 image: vertical trunk, straight legs,
# arms straight overhead.
STANDING = {
    "nose": (320.0, 70.0),
    "left_shoulder": (300.0, 120.0),
    "right_shoulder": (340.0, 120.0),
    "left_elbow": (300.0, 70.0),
    "right_elbow": (340.0, 70.0),
    "left_wrist": (300.0, 20.0),
    "right_wrist": (340.0, 20.0),
    "left_hip": (300.0, 250.0),
    "right_hip": (340.0, 250.0),
    "left_knee": (300.0, 340.0),
    "right_knee": (340.0, 340.0),
    "left_ankle": (300.0, 430.0),
    "right_ankle": (340.0, 430.0),
}


def make_frame(
    points: dict[str, tuple[float, float]],
    t_ms: float = 0.0,
    score: float = 0.9,
    **overrides: tuple[float, float],
) -> Frame:
    merged = {**points, **overrides}
    return Frame((Keypoint(n, x, y, score) for n, (x, y) in merged.items()), timestamp_ms=t_ms)


def hips_frame(hip_y: float, t_ms: float, score: float = 0.9) -> Frame:
    return Frame(
        [Keypoint("left_hip", 300.0, hip_y, score), Keypoint("right_hip", 340.0, hip_y, score)],
        timestamp_ms=t_ms,
    )


def leg_frame(angle_deg: float, t_ms: float, score: float = 0.9) -> Frame:
    """Both legs with the given hip-knee-ankle angle (180 = straight)."""
    pts: list[Keypoint] = []
    rad = math.radians(angle_deg)
    for side, x in (("left", 300.0), ("right", 340.0)):
        knee = (x, 340.0)
        pts.append(Keypoint(f"{side}_knee", knee[0], knee[1], score))
        pts.append(Keypoint(f"{side}_ankle", knee[0], knee[1] + 90.0, score))
        pts.append(Keypoint(f"{side}_hip", knee[0] + 90.0 * math.sin(rad), knee[1] + 90.0 * math.cos(rad), score))
    return Frame(pts, timestamp_ms=t_ms)


def standing_frames(n: int, start_ms: float = 0.0, step_ms: float = 80.0, **overrides) -> list[Frame]:
    return [make_frame(STANDING, start_ms + i * step_ms, **overrides) for i in range(n)]


def raw_pose(points: Optional[dict[str, tuple[float, float]]] = None, score: float = 0.9) -> list[dict]:
    points = points or STANDING
    return [{"name": n, "x": x, "y": y, "score": score} for n, (x, y) in points.items()]


@pytest.fixture
def standing() -> dict[str, tuple[float, float]]:
    return dict(STANDING)
