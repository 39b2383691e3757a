"""
Scalar Kalman filter and a per-session smoother that runs one filter per joint axis.
"""
from __future__ import annotations

import math
from typing import Optional

from .config import FILTER_MEASUREMENT_NOISE, FILTER_PROCESS_NOISE, FilterConfig
from .keypoints import Frame, Keypoint


class KalmanFilter1D:
    """
    Constant-position Kalman filter on one scalar channel.
    R is process noise, Q is measurement noise.
    """

    def __init__(self, R: float = FILTER_PROCESS_NOISE, Q: float = FILTER_MEASUREMENT_NOISE):
        self.R = R
        self.Q = Q
        self.x = math.nan
        self.cov = math.nan

    def filter(self, z: float) -> float:
        if math.isnan(self.x):
            self.x = z
            return self.x
        # Covariance is unset after the first observation.
        prior_cov = 0.0 if math.isnan(self.cov) else self.cov
        pred_cov = prior_cov + self.R
        gain = pred_cov / (pred_cov + self.Q)
        self.x = self.x + gain * (z - self.x)
        self.cov = (1.0 - gain) * pred_cov
        return self.x

    def reset(self) -> None:
        self.x = math.nan
        self.cov = math.nan


class KeypointSmoother:
    """Lazily creates a filter per (joint, axis) on first sighting; reset() on retake."""

    def __init__(self, config: Optional[FilterConfig] = None):
        self.config = config or FilterConfig()
        self._filters: dict[tuple[str, str], KalmanFilter1D] = {}

    def __len__(self) -> int:
        return len(self._filters)

    def _filter_for(self, name: str, axis: str) -> KalmanFilter1D:
        key = (name, axis)
        f = self._filters.get(key)
        if f is None:
            f = KalmanFilter1D(self.config.process_noise, self.config.measurement_noise)
            self._filters[key] = f
        return f

    def smooth(self, frame: Frame) -> Frame:
        return Frame(
            (
                Keypoint(
                    kp.name,
                    self._filter_for(kp.name, "x").filter(kp.x),
                    self._filter_for(kp.name, "y").filter(kp.y),
                    kp.score,
                )
                for kp in frame.values()
            ),
            timestamp_ms=frame.timestamp_ms,
        )

    def reset(self) -> None:
        self._filters.clear()
