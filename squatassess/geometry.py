"""
2D vector helpers shared by the rep detector and the scoring engine.
Image coordinates: x grows right, y grows down. Zero-length segments never yield NaN.
"""
from __future__ import annotations

import math
from typing import Optional

Point = tuple[float, float]

# Segments shorter than this are treated as degenerate.
_EPS = 1e-6
NEUTRAL_ANGLE_DEG = 180.0


def vertical_gap(a: Optional[Point], b: Optional[Point]) -> float:
    """|a.y - b.y|, or 0 when either side is missing."""
    if a is None or b is None:
        return 0.0
    return abs(a[1] - b[1])


def joint_angle(
    a: Optional[Point],
    b: Optional[Point],
    c: Optional[Point],
) -> Optional[float]:
    """Angle at b for triangle a-b-c, in degrees [0, 180]."""
    if a is None or b is None or c is None:
        return None
    ba = (a[0] - b[0], a[1] - b[1])
    bc = (c[0] - b[0], c[1] - b[1])
    denom = math.hypot(ba[0], ba[1]) * math.hypot(bc[0], bc[1])
    if denom < _EPS:
        return None
    cos_val = (ba[0] * bc[0] + ba[1] * bc[1]) / denom
    cos_val = max(-1.0, min(1.0, cos_val))
    return math.degrees(math.acos(cos_val))


def joint_angle_or_default(
    a: Optional[Point],
    b: Optional[Point],
    c: Optional[Point],
    default: float = NEUTRAL_ANGLE_DEG,
) -> float:
    angle = joint_angle(a, b, c)
    return default if angle is None else angle


def segment_angle(p: Optional[Point], q: Optional[Point]) -> Optional[float]:
    """Direction of the vector p -> q in degrees (-180, 180]."""
    if p is None or q is None:
        return None
    dx = q[0] - p[0]
    dy = q[1] - p[1]
    if abs(dx) + abs(dy) < _EPS:
        return None
    return math.degrees(math.atan2(dy, dx))


def normalize_angle(deg: float) -> float:
    """Fold a signed angle difference into [0, 180]."""
    deg = deg % 360.0
    if deg > 180.0:
        deg = 360.0 - deg
    return deg


def angle_from_vertical(p: Optional[Point], q: Optional[Point]) -> Optional[float]:
    """Unsigned deviation of the segment p -> q from the image vertical, in [0, 90]."""
    if p is None or q is None:
        return None
    dx = q[0] - p[0]
    dy = q[1] - p[1]
    if abs(dx) + abs(dy) < _EPS:
        return None
    return math.degrees(math.atan2(abs(dx), abs(dy)))


def angle_from_up(p: Optional[Point], q: Optional[Point]) -> Optional[float]:
    """Angle between p -> q and straight up on screen, in [0, 180]. 0 = q directly above p."""
    if p is None or q is None:
        return None
    dx = q[0] - p[0]
    dy = q[1] - p[1]
    norm = math.hypot(dx, dy)
    if norm < _EPS:
        return None
    cos_val = max(-1.0, min(1.0, -dy / norm))
    return math.degrees(math.acos(cos_val))
