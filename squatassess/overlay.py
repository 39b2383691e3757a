"""
Draw the smoothed skeleton and live assessment status on frames (in-place).
"""
from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from .keypoints import SKELETON_PAIRS, Frame

# Keypoints at or below this score are not drawn.
DRAW_SCORE_MIN = 0.4


def _pt(p: tuple[float, float]) -> tuple[int, int]:
    return (int(round(p[0])), int(round(p[1])))


def draw_skeleton(
    image: np.ndarray,
    frame: Frame,
    color: tuple[int, int, int] = (0, 255, 0),
    thickness: int = 3,
    min_score: float = DRAW_SCORE_MIN,
) -> None:
    for a, b in SKELETON_PAIRS:
        kp1 = frame.confident(a, min_score)
        kp2 = frame.confident(b, min_score)
        if kp1 is not None and kp2 is not None:
            cv2.line(image, _pt(kp1.xy), _pt(kp2.xy), color, thickness)
    for kp in frame.values():
        if kp.score > min_score:
            cv2.circle(image, _pt(kp.xy), 6, color, -1)


def draw_live_overlay(
    image: np.ndarray,
    frame: Optional[Frame],
    assessment_phase: str,
    rep_count: int,
    target_reps: int,
    rep_phase: str,
    front_frames: int,
    side_frames: int,
    message: Optional[str] = None,
) -> None:
    """
    Skeleton plus a status panel:
    assessment phase, squat count, rep phase and recorded frames per view.
    """
    h, w = image.shape[:2]
    if frame:
        draw_skeleton(image, frame)

    panel_h = 142
    overlay = image.copy()
    cv2.rectangle(overlay, (0, 0), (w, panel_h), (40, 40, 40), -1)
    cv2.addWeighted(overlay, 0.6, image, 0.4, 0, image)

    font = cv2.FONT_HERSHEY_SIMPLEX
    y0, dy = 28, 28
    color = (255, 255, 255)

    def put(line: str, y: int) -> None:
        cv2.putText(image, line, (12, y), font, 0.6, color, 2, cv2.LINE_AA)

    put(f"Phase: {assessment_phase}", y0)
    put(f"Squats: {rep_count}/{target_reps}", y0 + dy)
    put(f"Movement: {rep_phase}", y0 + 2 * dy)
    put(f"Frames: front {front_frames} | side {side_frames}", y0 + 3 * dy)

    if message:
        cv2.putText(
            image, message, (w // 2 - 160, h // 2),
            font, 0.8, (0, 200, 255), 2, cv2.LINE_AA
        )
