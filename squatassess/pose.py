"""
MediaPipe Pose oracle. Returns named keypoints in image coordinates (pixel) with a
visibility score, in the shape frame_from_detection() expects.
Uses Pose Landmarker task (MediaPipe 0.10+). CPU-only.
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
import urllib.request
from typing import Any, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


# MediaPipe Pose landmark indices (same as PoseLandmark)
class LandmarkIdx:
    NOSE = 0
    LEFT_EYE = 2
    RIGHT_EYE = 5
    LEFT_EAR = 7
    RIGHT_EAR = 8
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28


# MediaPipe landmark -> keypoint name; the other 16 landmarks are not tracked.
LANDMARK_NAMES: dict[int, str] = {
    LandmarkIdx.NOSE: "nose",
    LandmarkIdx.LEFT_EYE: "left_eye",
    LandmarkIdx.RIGHT_EYE: "right_eye",
    LandmarkIdx.LEFT_EAR: "left_ear",
    LandmarkIdx.RIGHT_EAR: "right_ear",
    LandmarkIdx.LEFT_SHOULDER: "left_shoulder",
    LandmarkIdx.RIGHT_SHOULDER: "right_shoulder",
    LandmarkIdx.LEFT_ELBOW: "left_elbow",
    LandmarkIdx.RIGHT_ELBOW: "right_elbow",
    LandmarkIdx.LEFT_WRIST: "left_wrist",
    LandmarkIdx.RIGHT_WRIST: "right_wrist",
    LandmarkIdx.LEFT_HIP: "left_hip",
    LandmarkIdx.RIGHT_HIP: "right_hip",
    LandmarkIdx.LEFT_KNEE: "left_knee",
    LandmarkIdx.RIGHT_KNEE: "right_knee",
    LandmarkIdx.LEFT_ANKLE: "left_ankle",
    LandmarkIdx.RIGHT_ANKLE: "right_ankle",
}

# Pose Landmarker model URL (lite = faster, CPU-friendly)
_POSE_MODEL_URL = "https://storage.googleapis.com/mediapipe-models/pose_landmarker/pose_landmarker_lite/float16/1/pose_landmarker_lite.task"
_POSE_MODEL_FILENAME = "pose_landmarker_lite.task"


def _get_model_path(cache_dir: Optional[str] = None) -> str:
    """Return path to pose landmarker model, downloading if needed."""
    if cache_dir is None:
        cache_dir = os.path.join(os.path.dirname(__file__), "..", "outputs")
    os.makedirs(cache_dir, exist_ok=True)
    path = os.path.join(cache_dir, _POSE_MODEL_FILENAME)
    if not os.path.isfile(path):
        logger.info("pose: downloading model to %s", path)
        urllib.request.urlretrieve(_POSE_MODEL_URL, path)
    return path


def create_pose_detector(
    min_detection_confidence: float = 0.5,
    min_tracking_confidence: float = 0.5,
    cache_dir: Optional[str] = None,
):
    """Create a PoseLandmarker (MediaPipe 0.10+ tasks API) in IMAGE mode."""
    from mediapipe.tasks.python.core import base_options
    from mediapipe.tasks.python.vision import PoseLandmarker, PoseLandmarkerOptions
    from mediapipe.tasks.python.vision.core import vision_task_running_mode

    model_path = _get_model_path(cache_dir)
    base = base_options.BaseOptions(model_asset_path=model_path)
    options = PoseLandmarkerOptions(
        base_options=base,
        running_mode=vision_task_running_mode.VisionTaskRunningMode.IMAGE,
        num_poses=1,
        min_pose_detection_confidence=min_detection_confidence,
        min_pose_presence_confidence=min_detection_confidence,
        min_tracking_confidence=min_tracking_confidence,
    )
    return PoseLandmarker.create_from_options(options)


def landmarks_to_keypoints(landmarks: Any, width: int, height: int) -> list[dict[str, Any]]:
    """Named keypoints (pixel coords) from a MediaPipe landmark list."""
    out = []
    for idx, name in LANDMARK_NAMES.items():
        if idx >= len(landmarks):
            continue
        lm = landmarks[idx]
        score = getattr(lm, "visibility", None)
        out.append({
            "name": name,
            "x": float(lm.x) * width,
            "y": float(lm.y) * height,
            "score": float(score) if score is not None else 1.0,
        })
    return out


def process_frame(frame_bgr: np.ndarray, pose) -> Optional[list[dict[str, Any]]]:
    """
    Run pose estimation on one BGR frame.
    Returns named keypoints in pixel coords, or None if no pose.
    """
    from mediapipe.tasks.python.vision.core import image as mp_image

    h, w = frame_bgr.shape[:2]
    rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
    mp_img = mp_image.Image(image_format=mp_image.ImageFormat.SRGB, data=rgb)
    result = pose.detect(mp_img)
    if not result.pose_landmarks:
        return None
    return landmarks_to_keypoints(result.pose_landmarks[0], w, h)


class PoseOracle:
    """
    Async wrapper: runs the (blocking) landmarker on a single worker thread so the
    event loop stays responsive. The detector is created lazily; a failed init is
    retried on the next call.
    """

    def __init__(self, cache_dir: Optional[str] = None):
        self.cache_dir = cache_dir
        self._pose = None
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="pose")

    def _estimate_sync(self, frame_bgr: np.ndarray) -> Optional[list[dict[str, Any]]]:
        if self._pose is None:
            self._pose = create_pose_detector(cache_dir=self.cache_dir)
        return process_frame(frame_bgr, self._pose)

    async def estimate(self, frame_bgr: np.ndarray) -> Optional[list[dict[str, Any]]]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._estimate_sync, frame_bgr)

    def close(self) -> None:
        # Let an in-flight detect() finish before the landmarker goes away.
        self._executor.shutdown(wait=True)
        if self._pose is not None and hasattr(self._pose, "close"):
            self._pose.close()
        self._pose = None
