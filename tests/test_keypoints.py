from __future__ import annotations

import pytest

from squatassess.keypoints import (
    KEYPOINT_ORDER,
    Frame,
    Keypoint,
    frame_from_detection,
    frame_from_dict,
    frame_to_dict,
)

from .conftest import STANDING, raw_pose


def test_named_pixel_pose_kept_as_is():
    frame = frame_from_detection(raw_pose(), 640, 480, timestamp_ms=12.0)
    assert frame is not None
    assert frame["left_hip"].xy == STANDING["left_hip"]
    assert frame["left_hip"].score == 0.9
    assert frame.timestamp_ms == 12.0
    assert len(frame) == len(STANDING)


def test_normalized_pose_scaled_to_capture_size():
    raw = [{"name": "left_hip", "x": 0.5, "y": 0.25, "score": 0.8}]
    frame = frame_from_detection(raw, 640, 480)
    assert frame["left_hip"].xy == (320.0, 120.0)


def test_unnamed_points_follow_keypoint_order():
    raw = [(10.0, 20.0, 0.9), (30.0, 40.0)]
    frame = frame_from_detection(raw, 640, 480)
    assert list(frame) == list(KEYPOINT_ORDER[:2])
    assert frame[KEYPOINT_ORDER[1]].score == 1.0


def test_unknown_names_and_garbage_dropped():
    raw = [
        {"name": "left_pinky", "x": 5, "y": 5, "score": 0.9},
        "garbage",
        {"name": "nose", "x": "nan", "y": 7, "score": 2.0},
    ]
    frame = frame_from_detection(raw, 640, 480)
    assert list(frame) == ["nose"]
    # NaN coerced to 0 and score clamped into [0, 1].
    assert frame["nose"].x == 0.0
    assert frame["nose"].score == 1.0


@pytest.mark.parametrize("raw", [None, [], [{"name": "tail", "x": 1, "y": 1}]])
def test_no_usable_keypoints_is_no_detection(raw):
    assert frame_from_detection(raw, 640, 480) is None


def test_confident_gate_is_strict():
    frame = Frame([Keypoint("nose", 1.0, 2.0, 0.4), Keypoint("left_hip", 3.0, 4.0, 0.41)])
    assert frame.confident("nose", 0.4) is None
    assert frame.confident("left_hip", 0.4) is not None
    assert frame.confident("right_hip", 0.0) is None
    assert frame.get("right_hip") is None


def test_dict_form_restores_equal_frame():
    frame = frame_from_detection(raw_pose(), 640, 480, timestamp_ms=99.0)
    data = frame_to_dict(frame)
    assert data["timestamp_ms"] == 99.0
    restored = frame_from_dict(data)
    assert restored == frame
    assert hash(restored) == hash(frame)


def test_slightly_off_screen_landmark_keeps_pose_normalized():
    raw = [
        {"name": n, "x": x / 640.0, "y": y / 480.0, "score": 0.9}
        for n, (x, y) in STANDING.items()
    ]
    ankle = next(kp for kp in raw if kp["name"] == "left_ankle")
    ankle["y"] = 1.03
    raw.append({"name": "right_eye", "x": -0.02, "y": 0.1, "score": 0.3})
    frame = frame_from_detection(raw, 640, 480)
    assert frame["left_hip"].y == pytest.approx(250.0)
    assert frame["left_ankle"].y == pytest.approx(1.03 * 480)
    assert frame["right_eye"].x == pytest.approx(-0.02 * 640)


def test_small_pixel_values_beyond_limit_stay_pixels():
    frame = frame_from_detection([{"name": "nose", "x": 0.5, "y": 2.0, "score": 0.9}], 640, 480)
    assert frame["nose"].xy == (0.5, 2.0)
