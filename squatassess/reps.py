"""
Rep detection from smoothed frames.
Two variants share one contract: hip height against capture-height thresholds,
or the hip-knee-ankle angle. Both debounce the bottom with a minimum dwell time
and only count a rep on a confirmed return to standing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import DetectorConfig
from .geometry import joint_angle, joint_angle_or_default
from .keypoints import Frame, KeypointName

logger = logging.getLogger(__name__)

RepCallback = Callable[[int], None]


class Phase(str, Enum):
    STANDING = "standing"
    DESCENDING = "descending"
    BOTTOM = "bottom"
    ASCENDING = "ascending"


@dataclass(frozen=True)
class RepUpdate:
    rep_count: int
    phase: Phase
    rep_completed: bool = False
    # Scalar the detector ran on; None when the frame was skipped.
    signal: Optional[float] = None


def knee_angle(frame: Frame, min_score: float) -> Optional[float]:
    """Mean hip-knee-ankle angle over the sides whose three joints pass the gate."""
    angles = []
    for side in ("left", "right"):
        hip = frame.confident(f"{side}_hip", min_score)
        knee = frame.confident(f"{side}_knee", min_score)
        ankle = frame.confident(f"{side}_ankle", min_score)
        if hip is None or knee is None or ankle is None:
            continue
        angle = joint_angle(hip.xy, knee.xy, ankle.xy)
        if angle is not None:
            angles.append(angle)
    if not angles:
        return None
    return sum(angles) / len(angles)


def hip_height(frame: Frame, min_score: float) -> Optional[float]:
    """Average hip y (higher = lower on screen). Both hips must pass the gate."""
    lh = frame.confident(KeypointName.LEFT_HIP.value, min_score)
    rh = frame.confident(KeypointName.RIGHT_HIP.value, min_score)
    if lh is None or rh is None:
        return None
    return (lh.y + rh.y) / 2.0


def in_critical_range(
    frame: Frame,
    band: tuple[float, float],
    min_score: float = 0.0,
) -> bool:
    """True when the left knee angle (180 if joints are missing) lies inside band."""
    hip = frame.confident(KeypointName.LEFT_HIP.value, min_score)
    knee = frame.confident(KeypointName.LEFT_KNEE.value, min_score)
    ankle = frame.confident(KeypointName.LEFT_ANKLE.value, min_score)
    angle = joint_angle_or_default(
        hip.xy if hip else None,
        knee.xy if knee else None,
        ankle.xy if ankle else None,
    )
    lo, hi = band
    return lo <= angle <= hi


class RepDetector:
    """Base state machine: rep counter, phase and the rep callback."""

    def __init__(self, confidence_gate: float, on_rep: Optional[RepCallback] = None):
        self.confidence_gate = confidence_gate
        self.on_rep = on_rep
        self.rep_count = 0
        self.phase = Phase.STANDING

    def reset(self) -> None:
        self.rep_count = 0
        self.phase = Phase.STANDING

    def signal(self, frame: Frame) -> Optional[float]:
        raise NotImplementedError

    def _advance(self, value: float, t_ms: float) -> bool:
        raise NotImplementedError

    def update(self, frame: Frame) -> RepUpdate:
        value = self.signal(frame)
        if value is None:
            return RepUpdate(self.rep_count, self.phase)
        completed = self._advance(value, frame.timestamp_ms)
        if completed:
            self.rep_count += 1
            logger.info("live_rep: rep %s (t=%.0fms)", self.rep_count, frame.timestamp_ms)
            if self.on_rep is not None:
                self.on_rep(self.rep_count)
        return RepUpdate(self.rep_count, self.phase, completed, value)


class HipHeightRepDetector(RepDetector):
    """
    standing -> descending -> bottom (dwell) -> ascending -> standing (+1).
    A bottom left before the dwell elapses is cancelled.
    """

    def __init__(
        self,
        frame_height: float,
        bottom_frac: float = 0.70,
        top_frac: float = 0.40,
        min_dwell_ms: float = 250.0,
        confidence_gate: float = 0.4,
        on_rep: Optional[RepCallback] = None,
    ):
        super().__init__(confidence_gate, on_rep)
        self.min_dwell_ms = min_dwell_ms
        self.bottom_frac = bottom_frac
        self.top_frac = top_frac
        self.set_frame_height(frame_height)
        self.bottom_entered_at: Optional[float] = None
        self._last_bottom_at: Optional[float] = None
        self._bottom_confirmed = False

    def set_frame_height(self, frame_height: float) -> None:
        """Recalibrate thresholds to the active capture resolution."""
        self.frame_height = float(frame_height)
        self.bottom_threshold = self.frame_height * self.bottom_frac
        self.top_threshold = self.frame_height * self.top_frac

    def reset(self) -> None:
        super().reset()
        self.bottom_entered_at = None
        self._last_bottom_at = None
        self._bottom_confirmed = False

    def signal(self, frame: Frame) -> Optional[float]:
        return hip_height(frame, self.confidence_gate)

    def _advance(self, hip_y: float, t_ms: float) -> bool:
        if hip_y > self.bottom_threshold:
            if self.bottom_entered_at is None:
                self.bottom_entered_at = t_ms
            self._last_bottom_at = t_ms
            if t_ms - self.bottom_entered_at > self.min_dwell_ms:
                self._bottom_confirmed = True
            self.phase = Phase.BOTTOM
            return False

        if self.bottom_entered_at is not None and not self._bottom_confirmed:
            logger.debug(
                "live_rep: bottom cancelled after %.0fms",
                (self._last_bottom_at or t_ms) - self.bottom_entered_at,
            )
            self.bottom_entered_at = None
            self._last_bottom_at = None

        if hip_y < self.top_threshold:
            if self._bottom_confirmed:
                self.bottom_entered_at = None
                self._last_bottom_at = None
                self._bottom_confirmed = False
                self.phase = Phase.STANDING
                return True
            self.phase = Phase.STANDING
            return False

        self.phase = Phase.ASCENDING if self._bottom_confirmed else Phase.DESCENDING
        return False


class KneeAngleRepDetector(RepDetector):
    """
    Phase from the instantaneous knee angle: > standing_angle standing,
    < bottom_angle bottom, otherwise descending/ascending by direction of change.
    A rep needs a bottom hold of min_bottom_hold_ms and a return to standing.
    """

    def __init__(
        self,
        standing_angle: float = 150.0,
        bottom_angle: float = 90.0,
        min_bottom_hold_ms: float = 300.0,
        confidence_gate: float = 0.4,
        on_rep: Optional[RepCallback] = None,
    ):
        super().__init__(confidence_gate, on_rep)
        self.standing_angle = standing_angle
        self.bottom_angle = bottom_angle
        self.min_bottom_hold_ms = min_bottom_hold_ms
        self._prev_angle: Optional[float] = None
        self._bottom_entered_at: Optional[float] = None
        self._bottom_confirmed = False
        self._cycle_started = False

    def reset(self) -> None:
        super().reset()
        self._prev_angle = None
        self._bottom_entered_at = None
        self._bottom_confirmed = False
        self._cycle_started = False

    def signal(self, frame: Frame) -> Optional[float]:
        return knee_angle(frame, self.confidence_gate)

    def _advance(self, angle: float, t_ms: float) -> bool:
        prev = self._prev_angle
        self._prev_angle = angle

        if angle > self.standing_angle:
            completed = self._cycle_started and self._bottom_confirmed
            self._cycle_started = False
            self._bottom_confirmed = False
            self._bottom_entered_at = None
            self.phase = Phase.STANDING
            return completed

        self._cycle_started = True
        if angle < self.bottom_angle:
            if self._bottom_entered_at is None:
                self._bottom_entered_at = t_ms
            if t_ms - self._bottom_entered_at > self.min_bottom_hold_ms:
                self._bottom_confirmed = True
            self.phase = Phase.BOTTOM
            return False

        if self._bottom_entered_at is not None and not self._bottom_confirmed:
            logger.debug("live_rep: bottom hold too short, discarded")
        self._bottom_entered_at = None
        if prev is None or angle == prev:
            if self.phase in (Phase.STANDING, Phase.BOTTOM):
                self.phase = Phase.ASCENDING if self._bottom_confirmed else Phase.DESCENDING
        elif angle < prev:
            self.phase = Phase.DESCENDING
        else:
            self.phase = Phase.ASCENDING
        return False


def make_detector(
    config: DetectorConfig,
    frame_height: float,
    on_rep: Optional[RepCallback] = None,
) -> RepDetector:
    if config.variant == "knee":
        return KneeAngleRepDetector(
            standing_angle=config.standing_angle,
            bottom_angle=config.bottom_angle,
            min_bottom_hold_ms=config.min_bottom_hold_ms,
            confidence_gate=config.confidence_gate,
            on_rep=on_rep,
        )
    return HipHeightRepDetector(
        frame_height,
        bottom_frac=config.bottom_frac,
        top_frac=config.top_frac,
        min_dwell_ms=config.min_dwell_ms,
        confidence_gate=config.confidence_gate,
        on_rep=on_rep,
    )
