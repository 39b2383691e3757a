"""
Score a completed two-view recording (front + side) into a MetricsReport.
Pure and deterministic: the same frames, in any order, give the same report.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional, Sequence

from .config import CONFIDENCE_GATE, ScoringConfig
from .geometry import angle_from_up, angle_from_vertical, normalize_angle, segment_angle, vertical_gap
from .keypoints import Frame

logger = logging.getLogger(__name__)

KNEE_VALGUS = "Knee Valgus"
TRUNK_LEAN = "Trunk Lean"
HEEL_LIFT = "Heel Lift"
ASYMMETRY = "Asymmetry"
ARMS_DROP = "Arms Drop"
FLAG_VOCABULARY: tuple[str, ...] = (KNEE_VALGUS, TRUNK_LEAN, HEEL_LIFT, ASYMMETRY, ARMS_DROP)

RISK_LIBRARY: dict[str, dict[str, str]] = {
    KNEE_VALGUS: {
        "explanation": "Weak hip external rotators, knees tracking inward.",
        "recommendation": "Strengthen glute medius and practice proper knee tracking.",
    },
    TRUNK_LEAN: {
        "explanation": "Limited ankle mobility or core control, forward torso.",
        "recommendation": "Maintain upright posture and engage core muscles.",
    },
    ARMS_DROP: {
        "explanation": "Tight lats or limited t-spine mobility, arms drop forward.",
        "recommendation": "Work on lat flexibility and thoracic extension.",
    },
    ASYMMETRY: {
        "explanation": "Side dominance or past injury compensation.",
        "recommendation": "Add single-leg work to even out left/right loading.",
    },
    HEEL_LIFT: {
        "explanation": "Limited dorsiflexion, heel rising off ground.",
        "recommendation": "Improve ankle dorsiflexion; keep weight through the heels.",
    },
}

BILATERAL_JOINTS = ("knee", "hip", "shoulder")


class RiskTier(IntEnum):
    INCOMPLETE = 0
    AMATEUR = 1
    PRO = 2
    ELITE = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


def risk_tier(injury_risk: Optional[int]) -> RiskTier:
    if injury_risk is None:
        return RiskTier.INCOMPLETE
    if injury_risk <= 1:
        return RiskTier.ELITE
    if injury_risk <= 3:
        return RiskTier.PRO
    return RiskTier.AMATEUR


@dataclass(frozen=True)
class MetricsReport:
    mobility: int
    compensation: int
    symmetry: int
    injury_risk: Optional[int]
    tier: RiskTier
    flags: tuple[str, ...] = ()
    # (flag, frames) pairs in vocabulary order.
    flag_counts: tuple[tuple[str, int], ...] = ()

    @property
    def incomplete(self) -> bool:
        return self.tier is RiskTier.INCOMPLETE

    def flag_count(self, flag: str) -> int:
        return dict(self.flag_counts).get(flag, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mobility": self.mobility,
            "compensation": self.compensation,
            "symmetry": self.symmetry,
            "injuryRisk": self.injury_risk,
            "tier": self.tier.label,
            "flags": list(self.flags),
            "flagCounts": dict(self.flag_counts),
            "explanations": {f: RISK_LIBRARY[f]["explanation"] for f in self.flags},
            "recommendations": [RISK_LIBRARY[f]["recommendation"] for f in self.flags],
        }


INCOMPLETE_REPORT = MetricsReport(
    mobility=0,
    compensation=0,
    symmetry=0,
    injury_risk=None,
    tier=RiskTier.INCOMPLETE,
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


def _point(frame: Frame, name: str, min_score: float) -> Optional[tuple[float, float]]:
    kp = frame.confident(name, min_score)
    return kp.xy if kp is not None else None


def _first_available(frame: Frame, min_score: float, *names: str) -> Optional[tuple[float, float]]:
    for name in names:
        pt = _point(frame, name, min_score)
        if pt is not None:
            return pt
    return None


def symmetry_differential(frame: Frame, min_score: float = CONFIDENCE_GATE) -> dict[str, float]:
    """Left/right vertical gap per bilateral joint (0 when a side is missing or below the gate)."""
    return {
        joint: vertical_gap(
            _point(frame, f"left_{joint}", min_score), _point(frame, f"right_{joint}", min_score)
        )
        for joint in BILATERAL_JOINTS
    }


def trunk_lean_deg(frame: Frame, min_score: float = CONFIDENCE_GATE) -> float:
    """Hip -> shoulder deviation from vertical, left side preferred. 0 when unavailable."""
    for side in ("left", "right"):
        angle = angle_from_vertical(
            _point(frame, f"{side}_hip", min_score), _point(frame, f"{side}_shoulder", min_score)
        )
        if angle is not None:
            return angle
    return 0.0


def arms_drop_deg(frame: Frame, min_score: float = CONFIDENCE_GATE) -> float:
    """Shoulder -> wrist deviation from straight overhead. 0 when unavailable."""
    for side in ("left", "right"):
        angle = angle_from_up(
            _point(frame, f"{side}_shoulder", min_score), _point(frame, f"{side}_wrist", min_score)
        )
        if angle is not None:
            return angle
    return 0.0


def knee_valgus_deg(frame: Frame, min_score: float = CONFIDENCE_GATE) -> float:
    """
    Frontal-plane knee deviation from a straight leg, in [0, 180].
    The knee angle is the folded difference between the knee->hip and knee->ankle
    directions; a straight leg reads 180, so valgus = 180 - angle.
    """
    worst = 0.0
    for side in ("left", "right"):
        knee = _point(frame, f"{side}_knee", min_score)
        upper = segment_angle(knee, _point(frame, f"{side}_hip", min_score))
        lower = segment_angle(knee, _point(frame, f"{side}_ankle", min_score))
        if upper is None or lower is None:
            continue
        worst = max(worst, 180.0 - normalize_angle(upper - lower))
    return worst


def ground_baseline(frames: Sequence[Frame], min_score: float = CONFIDENCE_GATE) -> Optional[float]:
    """Lowest ankle position seen in a view (largest y, image y grows downward)."""
    ys = [pt[1] for pt in (_first_available(f, min_score, "left_ankle", "right_ankle") for f in frames) if pt is not None]
    return max(ys) if ys else None


def heel_lift(frame: Frame, baseline_y: Optional[float], min_score: float = CONFIDENCE_GATE) -> float:
    """How far the ankle sits above its ground-contact baseline (0 when on the ground)."""
    ankle = _first_available(frame, min_score, "left_ankle", "right_ankle")
    if ankle is None or baseline_y is None:
        return 0.0
    return max(0.0, baseline_y - ankle[1])


def frame_flags(
    frame: Frame,
    view: str,
    heel_baseline: Optional[float],
    config: ScoringConfig,
) -> tuple[set[str], float, float]:
    """Return (flags triggered, mean symmetry differential, trunk lean) for one frame."""
    flags: set[str] = set()
    gate = config.confidence_gate
    diffs = symmetry_differential(frame, gate)
    if diffs["knee"] > config.asymmetry_threshold:
        flags.add(ASYMMETRY)
    lean = trunk_lean_deg(frame, gate)
    if lean > config.trunk_lean_threshold:
        flags.add(TRUNK_LEAN)
    if arms_drop_deg(frame, gate) > config.arms_drop_threshold:
        flags.add(ARMS_DROP)
    if view in config.valgus_views and knee_valgus_deg(frame, gate) > config.knee_valgus_threshold:
        flags.add(KNEE_VALGUS)
    if heel_lift(frame, heel_baseline, gate) > config.heel_lift_threshold:
        flags.add(HEEL_LIFT)
    sym = math.fsum(diffs.values()) / len(diffs)
    return flags, sym, lean


def score_assessment(
    front_frames: Sequence[Frame],
    side_frames: Sequence[Frame],
    config: Optional[ScoringConfig] = None,
) -> MetricsReport:
    """Compute mobility / compensation / symmetry scores, flags and risk tier."""
    config = config or ScoringConfig()
    if len(front_frames) < config.min_frames or len(side_frames) < config.min_frames:
        logger.info(
            "metrics: incomplete (front=%s side=%s, need %s each)",
            len(front_frames), len(side_frames), config.min_frames,
        )
        return INCOMPLETE_REPORT

    counts = {flag: 0 for flag in FLAG_VOCABULARY}
    mobility_terms: list[float] = []
    penalty_terms: list[float] = []
    symmetry_terms: list[float] = []
    for view, frames in (("front", front_frames), ("side", side_frames)):
        baseline = ground_baseline(frames, config.confidence_gate)
        for frame in frames:
            flags, sym, lean = frame_flags(frame, view, baseline, config)
            for flag in flags:
                counts[flag] += 1
            mobility_terms.append(100.0 - lean)
            penalty_terms.append(config.penalty_per_flag * len(flags))
            symmetry_terms.append(sym)

    n = len(mobility_terms)
    mobility = _clamp(math.fsum(mobility_terms) / n)
    compensation = _clamp(100.0 - math.fsum(penalty_terms) / n)
    symmetry = _clamp(100.0 - math.fsum(symmetry_terms) / n)

    # Flags need more than one triggering frame.
    surfaced = tuple(flag for flag in FLAG_VOCABULARY if counts[flag] > 1)
    injury_risk = len(surfaced)
    report = MetricsReport(
        mobility=_round_half_up(mobility),
        compensation=_round_half_up(compensation),
        symmetry=_round_half_up(symmetry),
        injury_risk=injury_risk,
        tier=risk_tier(injury_risk),
        flags=surfaced,
        flag_counts=tuple((flag, c) for flag, c in counts.items() if c),
    )
    logger.info(
        "metrics: frames=%s mobility=%s compensation=%s symmetry=%s risk=%s tier=%s flags=%s",
        n, report.mobility, report.compensation, report.symmetry,
        injury_risk, report.tier.label, ",".join(surfaced) or "-",
    )
    return report
