"""
Tunable thresholds for filtering, rep detection and scoring.
Defaults live in module constants; SessionConfig.from_env() applies SQUAT_* overrides.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Optional

logger = logging.getLogger(__name__)

# Kalman process noise (R) and measurement noise (Q). Larger Q/R = smoother, more lag.
FILTER_PROCESS_NOISE = 0.01
FILTER_MEASUREMENT_NOISE = 3.0
# Pose detection rate, decoupled from the display refresh (12 Hz).
DETECTION_INTERVAL_SEC = 1.0 / 12
# Keypoints at or below this score are treated as missing.
CONFIDENCE_GATE = 0.4
# Hip must stay past the bottom threshold this long for the rep to count.
BOTTOM_DWELL_MS = 250.0
# Hip-height thresholds as fractions of capture height (image y grows downward).
HIP_BOTTOM_FRAC = 0.70
HIP_TOP_FRAC = 0.40
# Knee angle (hip-knee-ankle) classification.
STANDING_KNEE_ANGLE_DEG = 150.0
BOTTOM_KNEE_ANGLE_DEG = 90.0
BOTTOM_HOLD_MS = 300.0
# Squats per view before the view is complete.
TARGET_REPS_PER_VIEW = 3
# Per-flag thresholds (degrees, except asymmetry and heel lift which are in coordinate units).
KNEE_VALGUS_THRESHOLD_DEG = 10.0
TRUNK_LEAN_THRESHOLD_DEG = 20.0
ARMS_DROP_THRESHOLD_DEG = 25.0
ASYMMETRY_THRESHOLD = 5.0
HEEL_LIFT_THRESHOLD = 12.0
MIN_FRAMES_PER_VIEW = 10
COMPENSATION_PENALTY_PER_FLAG = 5.0

DETECTOR_VARIANTS = ("hip", "knee")


@dataclass(frozen=True)
class FilterConfig:
    process_noise: float = FILTER_PROCESS_NOISE
    measurement_noise: float = FILTER_MEASUREMENT_NOISE


@dataclass(frozen=True)
class DetectorConfig:
    variant: str = "hip"
    confidence_gate: float = CONFIDENCE_GATE
    min_dwell_ms: float = BOTTOM_DWELL_MS
    bottom_frac: float = HIP_BOTTOM_FRAC
    top_frac: float = HIP_TOP_FRAC
    standing_angle: float = STANDING_KNEE_ANGLE_DEG
    bottom_angle: float = BOTTOM_KNEE_ANGLE_DEG
    min_bottom_hold_ms: float = BOTTOM_HOLD_MS
    target_reps: int = TARGET_REPS_PER_VIEW
    # Knee-angle band (deg) for recording; None records every frame of a recording phase.
    critical_range: Optional[tuple[float, float]] = None

    def __post_init__(self) -> None:
        if self.variant not in DETECTOR_VARIANTS:
            raise ValueError(f"Unknown detector variant: {self.variant!r}")
        if not self.top_frac < self.bottom_frac:
            raise ValueError("top_frac must be above (smaller than) bottom_frac")
        if not self.bottom_angle < self.standing_angle:
            raise ValueError("bottom_angle must be smaller than standing_angle")


@dataclass(frozen=True)
class ScoringConfig:
    min_frames: int = MIN_FRAMES_PER_VIEW
    knee_valgus_threshold: float = KNEE_VALGUS_THRESHOLD_DEG
    trunk_lean_threshold: float = TRUNK_LEAN_THRESHOLD_DEG
    arms_drop_threshold: float = ARMS_DROP_THRESHOLD_DEG
    asymmetry_threshold: float = ASYMMETRY_THRESHOLD
    heel_lift_threshold: float = HEEL_LIFT_THRESHOLD
    penalty_per_flag: float = COMPENSATION_PENALTY_PER_FLAG
    valgus_views: tuple[str, ...] = ("front",)
    # Keypoints at or below this score are left out of every measurement.
    confidence_gate: float = CONFIDENCE_GATE


@dataclass(frozen=True)
class SessionConfig:
    detection_interval_sec: float = DETECTION_INTERVAL_SEC
    filter: FilterConfig = field(default_factory=FilterConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)

    @classmethod
    def from_env(cls, prefix: str = "SQUAT_") -> "SessionConfig":
        """Defaults overridden by environment variables, e.g. SQUAT_FILTER_Q=5."""

        def _num(name: str, default: float) -> float:
            raw = os.getenv(prefix + name)
            if raw is None or raw == "":
                return default
            try:
                return float(raw)
            except ValueError:
                logger.warning("config: ignoring %s%s=%r (not a number)", prefix, name, raw)
                return default

        band_raw = os.getenv(prefix + "CRITICAL_RANGE", "")
        critical: Optional[tuple[float, float]] = None
        if band_raw:
            try:
                lo, hi = (float(v) for v in band_raw.split(","))
                critical = (min(lo, hi), max(lo, hi))
            except ValueError:
                logger.warning("config: ignoring %sCRITICAL_RANGE=%r (expected 'lo,hi')", prefix, band_raw)

        base = cls()
        rate = _num("DETECTION_HZ", 1.0 / base.detection_interval_sec)
        return replace(
            base,
            detection_interval_sec=1.0 / rate if rate > 0 else base.detection_interval_sec,
            filter=FilterConfig(
                process_noise=_num("FILTER_R", FILTER_PROCESS_NOISE),
                measurement_noise=_num("FILTER_Q", FILTER_MEASUREMENT_NOISE),
            ),
            detector=DetectorConfig(
                variant=os.getenv(prefix + "DETECTOR", "hip"),
                confidence_gate=_num("CONFIDENCE_GATE", CONFIDENCE_GATE),
                min_dwell_ms=_num("DWELL_MS", BOTTOM_DWELL_MS),
                bottom_frac=_num("HIP_BOTTOM_FRAC", HIP_BOTTOM_FRAC),
                top_frac=_num("HIP_TOP_FRAC", HIP_TOP_FRAC),
                standing_angle=_num("STANDING_ANGLE", STANDING_KNEE_ANGLE_DEG),
                bottom_angle=_num("BOTTOM_ANGLE", BOTTOM_KNEE_ANGLE_DEG),
                min_bottom_hold_ms=_num("BOTTOM_HOLD_MS", BOTTOM_HOLD_MS),
                target_reps=int(_num("TARGET_REPS", TARGET_REPS_PER_VIEW)),
                critical_range=critical,
            ),
            scoring=ScoringConfig(
                min_frames=int(_num("MIN_FRAMES", MIN_FRAMES_PER_VIEW)),
                knee_valgus_threshold=_num("KNEE_VALGUS_DEG", KNEE_VALGUS_THRESHOLD_DEG),
                trunk_lean_threshold=_num("TRUNK_LEAN_DEG", TRUNK_LEAN_THRESHOLD_DEG),
                arms_drop_threshold=_num("ARMS_DROP_DEG", ARMS_DROP_THRESHOLD_DEG),
                asymmetry_threshold=_num("ASYMMETRY", ASYMMETRY_THRESHOLD),
                heel_lift_threshold=_num("HEEL_LIFT", HEEL_LIFT_THRESHOLD),
                confidence_gate=_num("CONFIDENCE_GATE", CONFIDENCE_GATE),
            ),
        )
