from __future__ import annotations

import asyncio

import pytest

from squatassess.config import DetectorConfig, FilterConfig, SessionConfig
from squatassess.reps import Phase
from squatassess.session import (
    FRONT,
    SIDE,
    AssessmentPhase,
    AssessmentSession,
    DetectionLoop,
)

from .conftest import STANDING, raw_pose

# Near pass-through filter so synthetic hip trajectories reach the detector unchanged.
FAST = SessionConfig(filter=FilterConfig(process_noise=1000.0, measurement_noise=0.001))


def pose_at(hip_y: float) -> list[dict]:
    return raw_pose({**STANDING, "left_hip": (300.0, hip_y), "right_hip": (340.0, hip_y)})


def squat_samples(start_ms: float, step_ms: float = 50.0):
    t = start_ms
    ys = [150.0, 260.0] + [400.0] * 7 + [260.0, 150.0]
    out = []
    for y in ys:
        out.append((y, t))
        t += step_ms
    return out, t


def run_squats(session: AssessmentSession, n: int, start_ms: float = 0.0) -> float:
    t = start_ms
    for _ in range(n):
        samples, t = squat_samples(t)
        for y, ts in samples:
            session.process(pose_at(y), ts)
    return t


def test_idle_frames_are_not_recorded():
    session = AssessmentSession(FAST)
    update = session.process(pose_at(150.0), 0.0)
    assert update is not None
    assert not update.recorded
    assert update.assessment_phase is AssessmentPhase.IDLE
    assert session.front_frames == [] and session.side_frames == []


def test_no_pose_gives_no_update():
    session = AssessmentSession(FAST)
    session.set_phase(AssessmentPhase.RECORD_FRONT)
    assert session.process(None, 0.0) is None
    assert session.process([], 10.0) is None
    assert session.front_frames == []


def test_full_two_view_assessment():
    completed, reps, updates = [], [], []
    session = AssessmentSession(
        FAST, on_update=updates.append, on_rep=reps.append, on_view_complete=completed.append,
    )
    session.set_phase("record_front")
    t = run_squats(session, 3)
    assert session.rep_count == 3
    assert reps == [1, 2, 3]
    assert completed == [FRONT]
    assert len(session.front_frames) == 33
    assert all(u.recorded for u in updates)

    session.set_phase(AssessmentPhase.PAUSE)
    assert not session.process(pose_at(150.0), t).recorded

    session.set_phase(AssessmentPhase.RECORD_SIDE)
    assert session.rep_count == 0
    t = run_squats(session, 3, t + 1000.0)
    assert completed == [FRONT, SIDE]
    assert session.views_completed == frozenset({FRONT, SIDE})
    assert len(session.side_frames) == 33

    report = session.finish()
    assert session.phase is AssessmentPhase.COMPLETE
    assert session.report is report
    assert not report.incomplete


def test_finish_with_short_recording_is_incomplete():
    session = AssessmentSession(FAST)
    session.set_phase(AssessmentPhase.RECORD_FRONT)
    for i in range(4):
        session.process(pose_at(150.0), i * 80.0)
    report = session.finish()
    assert report.incomplete
    assert report.to_dict()["tier"] == "Incomplete"


def test_view_complete_callback_may_change_phase():
    session = AssessmentSession(FAST)
    session.on_view_complete = lambda view: session.set_phase(AssessmentPhase.PAUSE)
    session.set_phase(AssessmentPhase.RECORD_FRONT)
    t = run_squats(session, 2)
    last = None
    for y, ts in squat_samples(t)[0]:
        last = session.process(pose_at(y), ts)
        if session.phase is AssessmentPhase.PAUSE:
            break
    assert last.rep_completed
    assert last.assessment_phase is AssessmentPhase.RECORD_FRONT
    assert session.phase is AssessmentPhase.PAUSE


def test_critical_range_limits_recording():
    config = SessionConfig(
        filter=FAST.filter,
        detector=DetectorConfig(critical_range=(75.0, 120.0)),
    )
    session = AssessmentSession(config)
    session.set_phase(AssessmentPhase.RECORD_FRONT)
    # Straight legs read 180 deg, outside the band.
    assert not session.process(raw_pose(), 0.0).recorded
    assert session.front_frames == []


def test_reset_starts_a_retake():
    session = AssessmentSession(FAST)
    session.set_phase(AssessmentPhase.RECORD_FRONT)
    run_squats(session, 3)
    session.reset()
    assert session.phase is AssessmentPhase.IDLE
    assert session.rep_count == 0
    assert session.front_frames == []
    assert session.views_completed == frozenset()
    assert len(session.smoother) == 0
    assert session.report is None
    assert session.detector.phase is Phase.STANDING


def test_set_frame_size_rescales_detector():
    session = AssessmentSession(FAST, frame_height=480.0)
    session.set_frame_size(1280.0, 720.0)
    assert session.detector.bottom_threshold == pytest.approx(504.0)


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def test_loop_throttles_to_interval():
    calls = []

    async def estimate():
        calls.append(1)
        return raw_pose()

    async def scenario():
        clock = FakeClock()
        loop = DetectionLoop(AssessmentSession(FAST), estimate, interval_s=0.1, clock=clock)
        first = await loop.tick()
        clock.t = 0.05
        skipped = await loop.tick()
        clock.t = 0.1
        second = await loop.tick()
        return loop, first, skipped, second

    loop, first, skipped, second = asyncio.run(scenario())
    assert first is not None and second is not None
    assert skipped is None
    assert len(calls) == 2
    assert loop.frames_processed == 2
    assert second.frame.timestamp_ms == pytest.approx(100.0)


def test_loop_never_overlaps_inference():
    calls = []

    async def scenario():
        release = asyncio.Event()

        async def estimate():
            calls.append(1)
            await release.wait()
            return raw_pose()

        clock = FakeClock()
        loop = DetectionLoop(AssessmentSession(FAST), estimate, interval_s=0.0, clock=clock)
        pending = asyncio.ensure_future(loop.tick())
        await asyncio.sleep(0)
        assert loop.inference_in_flight
        clock.t = 1.0
        overlapped = await loop.tick()
        release.set()
        done = await pending
        return loop, overlapped, done

    loop, overlapped, done = asyncio.run(scenario())
    assert overlapped is None
    assert done is not None
    assert len(calls) == 1
    assert not loop.inference_in_flight


def test_loop_skips_frame_when_estimator_fails():
    async def estimate():
        raise RuntimeError("model crashed")

    async def scenario():
        loop = DetectionLoop(AssessmentSession(FAST), estimate, interval_s=0.0, clock=FakeClock())
        return loop, await loop.tick()

    loop, update = asyncio.run(scenario())
    assert update is None
    assert loop.frames_skipped == 1
    assert not loop.inference_in_flight


def test_loop_start_and_stop():
    async def estimate():
        return raw_pose()

    async def scenario():
        loop = DetectionLoop(AssessmentSession(FAST), estimate, interval_s=0.0, tick_s=0.001)
        loop.start()
        assert loop.running
        await asyncio.sleep(0.05)
        await loop.stop()
        processed = loop.frames_processed
        await asyncio.sleep(0.01)
        return loop, processed

    loop, processed = asyncio.run(scenario())
    assert not loop.running
    assert processed > 0
    assert loop.frames_processed == processed


def test_rep_counts_kept_per_view():
    session = AssessmentSession(FAST)
    session.set_phase(AssessmentPhase.RECORD_FRONT)
    t = run_squats(session, 3)
    session.set_phase(AssessmentPhase.PAUSE)
    session.set_phase(AssessmentPhase.RECORD_SIDE)
    run_squats(session, 2, t + 1000.0)
    assert session.rep_count == 2
    assert session.rep_counts == {FRONT: 3, SIDE: 2}
    session.reset()
    assert session.rep_counts == {FRONT: 0, SIDE: 0}
