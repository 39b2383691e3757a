"""
Keypoint / Frame data model and the boundary mapping from raw pose-oracle output.
Frames are immutable; filtering and normalization always build new ones.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)


class KeypointName(str, Enum):
    NOSE = "nose"
    LEFT_EYE = "left_eye"
    RIGHT_EYE = "right_eye"
    LEFT_EAR = "left_ear"
    RIGHT_EAR = "right_ear"
    LEFT_SHOULDER = "left_shoulder"
    RIGHT_SHOULDER = "right_shoulder"
    LEFT_ELBOW = "left_elbow"
    RIGHT_ELBOW = "right_elbow"
    LEFT_WRIST = "left_wrist"
    RIGHT_WRIST = "right_wrist"
    LEFT_HIP = "left_hip"
    RIGHT_HIP = "right_hip"
    LEFT_KNEE = "left_knee"
    RIGHT_KNEE = "right_knee"
    LEFT_ANKLE = "left_ankle"
    RIGHT_ANKLE = "right_ankle"


# MoveNet / COCO output order; used when the oracle returns bare points without names.
KEYPOINT_ORDER: tuple[str, ...] = tuple(k.value for k in KeypointName)
_KNOWN_NAMES = frozenset(KEYPOINT_ORDER)
# Normalized models report landmarks slightly outside the image (e.g. y=1.03 for an
# off-screen ankle); anything beyond this is a pixel coordinate.
NORMALIZED_COORD_LIMIT = 1.5

# Pose skeleton connections by name, for overlay drawing.
SKELETON_PAIRS: tuple[tuple[str, str], ...] = (
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    ("left_hip", "right_hip"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "left_knee"),
    ("left_knee", "left_ankle"),
    ("right_hip", "right_knee"),
    ("right_knee", "right_ankle"),
)


class Keypoint(NamedTuple):
    name: str
    x: float
    y: float
    score: float = 1.0

    @property
    def xy(self) -> tuple[float, float]:
        return (self.x, self.y)


class Frame(Mapping[str, Keypoint]):
    """
    Keypoints detected at one sampling instant, unique by name.
    Any keypoint may be missing (occlusion); use get() and handle None.
    """

    __slots__ = ("_points", "timestamp_ms")

    def __init__(self, keypoints: Iterable[Keypoint] = (), timestamp_ms: float = 0.0):
        self._points: dict[str, Keypoint] = {kp.name: kp for kp in keypoints}
        self.timestamp_ms = float(timestamp_ms)

    def __getitem__(self, name: str) -> Keypoint:
        return self._points[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Frame):
            return NotImplemented
        return self._points == other._points and self.timestamp_ms == other.timestamp_ms

    def __hash__(self) -> int:
        return hash((frozenset(self._points.items()), self.timestamp_ms))

    def __repr__(self) -> str:
        return f"Frame(t={self.timestamp_ms:.0f}ms, keypoints={len(self._points)})"

    def confident(self, name: str, min_score: float) -> Optional[Keypoint]:
        """Keypoint `name` if present with score above the confidence gate, else None."""
        kp = self._points.get(name)
        if kp is None or kp.score <= min_score:
            return None
        return kp

    def to_list(self) -> list[dict[str, Any]]:
        return [
            {"name": kp.name, "x": kp.x, "y": kp.y, "score": kp.score}
            for kp in self._points.values()
        ]


def _coerce_float(value: Any, default: float = 0.0) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if out == out else default


def _looks_normalized(points: Sequence[tuple[float, float]]) -> bool:
    if not points:
        return False
    return max(max(abs(x), abs(y)) for x, y in points) <= NORMALIZED_COORD_LIMIT


def frame_from_detection(
    raw: Optional[Sequence[Any]],
    width: float,
    height: float,
    timestamp_ms: float = 0.0,
) -> Optional[Frame]:
    """
    Map one untyped pose from the oracle into a Frame.

    raw: list of keypoints, each a dict with x, y, score and (optionally) name,
    or an (x, y[, score]) sequence. Unnamed points are matched to KEYPOINT_ORDER
    by position. Unknown names are dropped.
    If every coordinate lies within +-NORMALIZED_COORD_LIMIT the pose is treated as
    normalized and scaled to the capture size; otherwise coordinates are taken as pixels.
    Returns None when there is no usable keypoint (no detection).
    """
    if not raw:
        return None
    parsed: list[tuple[str, float, float, float]] = []
    for i, item in enumerate(raw):
        if isinstance(item, Mapping):
            name = item.get("name")
            if name is not None and not isinstance(name, str):
                name = str(name)
            x = _coerce_float(item.get("x"))
            y = _coerce_float(item.get("y"))
            score = _coerce_float(item.get("score", item.get("visibility", 0.0)))
        elif isinstance(item, (list, tuple)) and len(item) >= 2:
            name = None
            x = _coerce_float(item[0])
            y = _coerce_float(item[1])
            score = _coerce_float(item[2]) if len(item) > 2 else 1.0
        else:
            continue
        if not name:
            name = KEYPOINT_ORDER[i] if i < len(KEYPOINT_ORDER) else None
        if name not in _KNOWN_NAMES:
            logger.debug("keypoints: dropping unrecognized keypoint %r", name)
            continue
        parsed.append((str(name), x, y, max(0.0, min(1.0, score))))
    if not parsed:
        return None
    if _looks_normalized([(x, y) for _, x, y, _ in parsed]):
        sx, sy = float(width), float(height)
    else:
        sx = sy = 1.0
    return Frame(
        (Keypoint(name, x * sx, y * sy, score) for name, x, y, score in parsed),
        timestamp_ms=timestamp_ms,
    )


def frame_from_dict(data: Mapping[str, Any]) -> Frame:
    """Rebuild a Frame from its JSON form ({"timestamp_ms": .., "keypoints": [..]})."""
    return Frame(
        (
            Keypoint(str(kp["name"]), float(kp["x"]), float(kp["y"]), float(kp.get("score", 1.0)))
            for kp in data.get("keypoints", [])
            if kp.get("name") in _KNOWN_NAMES
        ),
        timestamp_ms=float(data.get("timestamp_ms", 0.0)),
    )


def frame_to_dict(frame: Frame) -> dict[str, Any]:
    return {"timestamp_ms": frame.timestamp_ms, "keypoints": frame.to_list()}
