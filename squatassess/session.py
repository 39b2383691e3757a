"""
One assessment session: phase signal, keypoint smoothing, rep detection and the
per-view recording buffers, plus the throttled async loop that feeds it.
All per-session state lives on the AssessmentSession instance; reset() starts a retake.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from .config import SessionConfig
from .kalman import KeypointSmoother
from .keypoints import Frame, frame_from_detection
from .metrics import MetricsReport, score_assessment
from .reps import Phase, RepDetector, in_critical_range, make_detector

logger = logging.getLogger(__name__)

FRONT = "front"
SIDE = "side"


class AssessmentPhase(str, Enum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    RECORD_FRONT = "record_front"
    PAUSE = "pause"
    RECORD_SIDE = "record_side"
    COMPUTING = "computing"
    COMPLETE = "complete"

    @property
    def is_recording(self) -> bool:
        return self in (AssessmentPhase.RECORD_FRONT, AssessmentPhase.RECORD_SIDE)

    @property
    def view(self) -> Optional[str]:
        if self is AssessmentPhase.RECORD_FRONT:
            return FRONT
        if self is AssessmentPhase.RECORD_SIDE:
            return SIDE
        return None


@dataclass(frozen=True)
class LiveUpdate:
    """Per-frame output pushed to the caller for overlay rendering."""

    frame: Frame
    assessment_phase: AssessmentPhase
    rep_count: int
    phase: Phase
    rep_completed: bool = False
    recorded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "update",
            "timestamp_ms": self.frame.timestamp_ms,
            "keypoints": self.frame.to_list(),
            "assessment_phase": self.assessment_phase.value,
            "rep_count": self.rep_count,
            "phase": self.phase.value,
            "rep_completed": self.rep_completed,
            "recorded": self.recorded,
        }


@dataclass
class ViewBuffer:
    """Append-only recording of smoothed frames for one camera view."""

    view: str
    frames: list[Frame] = field(default_factory=list)

    def append(self, frame: Frame) -> None:
        self.frames.append(frame)

    def __len__(self) -> int:
        return len(self.frames)


class AssessmentSession:
    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        frame_width: float = 640.0,
        frame_height: float = 480.0,
        on_update: Optional[Callable[[LiveUpdate], None]] = None,
        on_rep: Optional[Callable[[int], None]] = None,
        on_view_complete: Optional[Callable[[str], None]] = None,
    ):
        self.config = config or SessionConfig()
        self.frame_width = float(frame_width)
        self.frame_height = float(frame_height)
        self.on_update = on_update
        self.on_rep = on_rep
        self.on_view_complete = on_view_complete
        self.smoother = KeypointSmoother(self.config.filter)
        self.detector: RepDetector = make_detector(self.config.detector, self.frame_height, self._handle_rep)
        self.buffers = {FRONT: ViewBuffer(FRONT), SIDE: ViewBuffer(SIDE)}
        self.phase = AssessmentPhase.IDLE
        self._views_completed: set[str] = set()
        self._rep_counts = {FRONT: 0, SIDE: 0}
        self.report: Optional[MetricsReport] = None

    @property
    def rep_count(self) -> int:
        return self.detector.rep_count

    @property
    def rep_counts(self) -> dict[str, int]:
        """Reps counted in each view so far."""
        return dict(self._rep_counts)

    @property
    def views_completed(self) -> frozenset[str]:
        return frozenset(self._views_completed)

    @property
    def front_frames(self) -> list[Frame]:
        return self.buffers[FRONT].frames

    @property
    def side_frames(self) -> list[Frame]:
        return self.buffers[SIDE].frames

    def set_frame_size(self, width: float, height: float) -> None:
        self.frame_width = float(width)
        self.frame_height = float(height)
        if hasattr(self.detector, "set_frame_height"):
            self.detector.set_frame_height(self.frame_height)

    def set_phase(self, phase: AssessmentPhase | str) -> None:
        phase = AssessmentPhase(phase)
        if phase is self.phase:
            return
        logger.info("session: phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase
        if phase.is_recording:
            # Rep count is per view.
            self.detector.reset()

    def _handle_rep(self, count: int) -> None:
        if self.on_rep is not None:
            self.on_rep(count)
        view = self.phase.view
        if view is not None:
            self._rep_counts[view] = count
        if view is not None and count >= self.config.detector.target_reps and view not in self._views_completed:
            self._views_completed.add(view)
            logger.info("session: %s view complete (%s reps, %s frames)", view, count, len(self.buffers[view]))
            if self.on_view_complete is not None:
                self.on_view_complete(view)

    def process(self, raw_pose: Optional[Sequence[Any]], timestamp_ms: float) -> Optional[LiveUpdate]:
        """Map, smooth, detect and record one oracle result. None when there was no pose."""
        frame = frame_from_detection(raw_pose, self.frame_width, self.frame_height, timestamp_ms)
        if frame is None:
            return None
        return self.process_frame(frame)

    def process_frame(self, frame: Frame) -> LiveUpdate:
        smoothed = self.smoother.smooth(frame)
        recorded = False
        rep = None
        phase = self.phase
        if phase.is_recording:
            band = self.config.detector.critical_range
            if band is None or in_critical_range(smoothed, band, self.config.detector.confidence_gate):
                self.buffers[phase.view].append(smoothed)
                recorded = True
            # May fire on_view_complete, which is free to change the phase.
            rep = self.detector.update(smoothed)
        update = LiveUpdate(
            frame=smoothed,
            assessment_phase=phase,
            rep_count=self.detector.rep_count,
            phase=rep.phase if rep is not None else self.detector.phase,
            rep_completed=rep.rep_completed if rep is not None else False,
            recorded=recorded,
        )
        if self.on_update is not None:
            self.on_update(update)
        return update

    def finish(self) -> MetricsReport:
        self.set_phase(AssessmentPhase.COMPUTING)
        self.report = score_assessment(self.front_frames, self.side_frames, self.config.scoring)
        self.set_phase(AssessmentPhase.COMPLETE)
        return self.report

    def reset(self) -> None:
        """Clear filters, detector and buffers so a retake starts from scratch."""
        self.smoother.reset()
        self.detector.reset()
        for buf in self.buffers.values():
            buf.frames.clear()
        self._views_completed.clear()
        self._rep_counts = {FRONT: 0, SIDE: 0}
        self.report = None
        self.phase = AssessmentPhase.IDLE
        logger.info("session: reset")


PoseEstimator = Callable[[], Awaitable[Optional[Sequence[Any]]]]


class DetectionLoop:
    """
    Cancellable periodic task that pulls poses from an async estimator and feeds the session.
    Inference is throttled to interval_s regardless of how often the loop wakes up,
    and never overlaps itself.
    """

    def __init__(
        self,
        session: AssessmentSession,
        estimate: PoseEstimator,
        interval_s: Optional[float] = None,
        tick_s: float = 1.0 / 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.estimate = estimate
        self.interval_s = session.config.detection_interval_sec if interval_s is None else interval_s
        self.tick_s = tick_s
        self.clock = clock
        self.inference_in_flight = False
        self.frames_processed = 0
        self.frames_skipped = 0
        self._last_detection: Optional[float] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(
            "loop: stopped (processed=%s skipped=%s)", self.frames_processed, self.frames_skipped
        )

    async def tick(self) -> Optional[LiveUpdate]:
        """Run one detection if the interval has elapsed and nothing is in flight."""
        now = self.clock()
        if self.inference_in_flight:
            return None
        if self._last_detection is not None and now - self._last_detection < self.interval_s:
            return None
        self._last_detection = now
        self.inference_in_flight = True
        try:
            raw = await self.estimate()
        except Exception as e:
            self.frames_skipped += 1
            logger.warning("loop: pose estimation failed, skipping frame: %s", e)
            return None
        finally:
            self.inference_in_flight = False
        if self._stopping:
            return None
        update = self.session.process(raw, now * 1000.0)
        if update is None:
            self.frames_skipped += 1
        else:
            self.frames_processed += 1
        return update

    async def _run(self) -> None:
        while not self._stopping:
            await self.tick()
            await asyncio.sleep(self.tick_s)
