"""
Frame sources for video files and webcam.
Generators yield (frame_bgr, timestamp_ms) and release the capture on exit.
"""
from __future__ import annotations

import time
from typing import Generator, Optional

import cv2
import numpy as np


def video_frames(
    video_path: str,
    sample_interval_sec: Optional[float] = None,
) -> Generator[tuple[np.ndarray, float], None, None]:
    """
    Yield frames from a video file with timestamps derived from the file's FPS.
    With sample_interval_sec set, frames closer than that to the last yielded one are skipped.
    """
    cap = cv2.VideoCapture(video_path)
    if not cap.isOpened():
        raise FileNotFoundError(f"Cannot open video: {video_path}")
    try:
        fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
        idx = 0
        last_ms: Optional[float] = None
        while True:
            ret, frame = cap.read()
            if not ret:
                break
            t_ms = idx * 1000.0 / fps
            idx += 1
            if sample_interval_sec and last_ms is not None and (t_ms - last_ms) < sample_interval_sec * 1000.0:
                continue
            last_ms = t_ms
            yield (frame, t_ms)
    finally:
        cap.release()


class Camera:
    """Webcam handle with explicit release, for the live loop."""

    def __init__(self, camera_id: int = 0, width: int = 1280, height: int = 720):
        self.cap = cv2.VideoCapture(camera_id)
        if not self.cap.isOpened():
            raise RuntimeError(f"Cannot open camera {camera_id}. Check permissions and that no other app is using it.")
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self._t0 = time.perf_counter()
        self.last_frame: Optional[np.ndarray] = None

    @property
    def size(self) -> tuple[int, int]:
        w = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        h = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        return (w, h)

    def read(self) -> Optional[tuple[np.ndarray, float]]:
        ret, frame = self.cap.read()
        if not ret:
            return None
        self.last_frame = frame
        return frame, (time.perf_counter() - self._t0) * 1000.0

    def release(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
