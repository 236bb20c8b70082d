"""End-to-end tests for the detection session."""

import threading

import cv2
import numpy as np
import pytest

from bounceback.config import config
from bounceback.vision import DetectionSession, VisionSessionError
from bounceback.vision.detection.utils import DetectionUtils
from bounceback.vision.models import (
    BallCandidate,
    BoundaryRegion,
    DetectionMethod,
    ProcessingMode,
    Target,
    TrackState,
)

from .frames import make_ball_frame, make_green_frame

BALL_CENTER = (330, 240)


def _locked_target():
    return Target(
        center=(320, 240),
        radius=40,
        bounding_box=(280, 200, 80, 80),
        target_number=1,
    )


def _run(session, frame, count, **kwargs):
    return [session.process_frame(frame, **kwargs) for _ in range(count)]


@pytest.fixture()
def session():
    session = DetectionSession({"max_processing_fps": 0})
    yield session
    session.close()


class TestDetectionSessionPipeline:
    def test_stationary_ball_on_target(self, session, ball_frame):
        session.lock_targets([_locked_target()])

        results = _run(session, ball_frame, 3)

        assert not results[0].ball.is_detected
        assert not results[1].ball.is_detected
        final = results[2]
        assert final.ball.is_detected
        assert DetectionUtils.calculate_distance(final.ball.position, BALL_CENTER) <= 4
        assert final.statistics.detection_method == DetectionMethod.BALL_SPECIFIC
        assert final.impact.did_occur
        assert final.impact_target_number == 1
        assert session.get_statistics()["tracker_state"] == "tracking"

    def test_selector_reports_ball_specific_weight(self, session, ball_frame):
        best = session.selector.select(ball_frame)
        assert best.method == DetectionMethod.BALL_SPECIFIC
        assert best.confidence == pytest.approx(0.9)

    def test_impact_reported_once(self, session, ball_frame):
        session.lock_targets([_locked_target()])
        results = _run(session, ball_frame, 6)
        assert [r.impact.did_occur for r in results].count(True) == 1
        assert session.get_statistics()["impacts_reported"] == 1

    def test_no_ball(self, session, green_frame):
        session.lock_targets([_locked_target()])
        for result in _run(session, green_frame, 5):
            assert result.ball == BallCandidate.not_detected()
            assert not result.impact.did_occur
            assert result.impact_target_number is None

    def test_replayed_ball_does_not_report_second_impact(self, session, ball_frame):
        session.lock_targets([_locked_target()])
        # Stationary frames after the hit are rejected by the tracker gates
        results = _run(session, ball_frame, 8)
        results.append(session.process_frame(make_ball_frame((520, 380))))

        first_hit = results[2]
        final = results[-1]
        assert first_hit.impact.did_occur
        assert final.ball.is_detected
        assert final.ball.position == first_hit.ball.position
        assert not final.impact.did_occur
        assert [r.impact.did_occur for r in results].count(True) == 1
        assert session.get_statistics()["impacts_reported"] == 1

    def test_ball_off_target(self, session):
        session.lock_targets([_locked_target()])
        results = _run(session, make_ball_frame((520, 380)), 3)
        assert results[2].ball.is_detected
        assert not results[2].impact.did_occur

    def test_explicit_boundary_crops_and_assigns_quadrants(self, session, ball_frame):
        session.lock_targets([_locked_target()])
        boundary = BoundaryRegion(200, 120, 260, 240)

        results = _run(session, ball_frame, 3, boundary_region=boundary)

        final = results[2]
        assert final.boundary_region == boundary
        assert final.targets[0].quadrant == 3
        assert DetectionUtils.calculate_distance(final.ball.position, BALL_CENTER) <= 4
        assert final.impact.did_occur
        assert session.locked_boundary is None

    def test_boundary_detected_and_locked(self, session):
        frame = make_ball_frame(BALL_CENTER)
        cv2.rectangle(frame, (100, 80), (500, 380), (255, 0, 255), 12)

        result = session.process_frame(frame)

        assert session.locked_boundary is not None
        assert result.boundary_region == session.locked_boundary
        assert result.boundary_region.contains(BALL_CENTER)

    def test_detected_targets_are_numbered(self, session):
        frame = make_green_frame()
        cv2.circle(frame, (320, 240), 60, (0, 255, 255), -1)

        result = session.process_frame(frame)

        assert [t.target_number for t in result.targets] == [1]
        assert session.lock_targets() == result.targets
        assert session.locked_targets == result.targets

    def test_lock_boundary_assigns_quadrants_to_locked_targets(self, session):
        session.lock_targets([_locked_target()])
        session.lock_boundary(BoundaryRegion(0, 0, 400, 400))
        assert session.locked_targets[0].quadrant == 4

        session.lock_boundary(BoundaryRegion(300, 0, 400, 400))
        assert session.locked_targets[0].quadrant == 3

    def test_confidences_stay_in_range(self, session):
        frames = [make_ball_frame((200 + 15 * i, 240)) for i in range(6)]
        for frame in frames:
            result = session.process_frame(frame)
            assert 0.0 <= result.ball.confidence <= 1.0
            for target in result.targets:
                assert 0.0 <= target.confidence <= 1.0


class TestDetectionSessionControl:
    def test_invalid_frame_returns_sentinel_without_state_change(self, session):
        result = session.process_frame(None)

        assert result.ball == BallCandidate.not_detected()
        assert not result.impact.did_occur
        assert result.targets == []
        stats = session.get_statistics()
        assert stats["frame_counter"] == 0
        assert stats["invalid_frames"] == 1
        assert stats["frames_processed"] == 0

    def test_throttle_drops_frames(self, ball_frame):
        session = DetectionSession({"max_processing_fps": 1})
        assert session.process_frame(ball_frame) is not None
        assert session.process_frame(ball_frame) is None
        assert session.get_statistics()["frames_dropped"] == 1

    def test_frame_in_flight_is_dropped(self, session, ball_frame):
        session._processing_lock.acquire()
        try:
            assert session.process_frame(ball_frame) is None
        finally:
            session._processing_lock.release()
        assert session.get_statistics()["frames_dropped"] == 1

    def test_reset_restarts_tracking(self, session, ball_frame):
        session.lock_targets([_locked_target()])
        _run(session, ball_frame, 3)

        session.reset()
        session.reset()

        stats = session.get_statistics()
        assert stats["tracker_state"] == "idle"
        assert stats["tracking"]["history_length"] == 0
        assert not session.process_frame(ball_frame).ball.is_detected

    def test_results_repeat_after_reset(self, session, ball_frame):
        session.lock_targets([_locked_target()])
        first = [r.to_dict() for r in _run(session, ball_frame, 3)]
        session.reset()
        second = [r.to_dict() for r in _run(session, ball_frame, 3)]

        for a, b in zip(first, second):
            a.pop("statistics")
            b.pop("statistics")
            assert a == b

    def test_reset_during_frame_discards_ball_result(self, session, ball_frame):
        # Pin the mode so calibration does not rebuild the selector
        session.set_processing_mode("balanced")
        original_select = session.selector.select

        def select_then_reset(frame, context=None):
            candidate = original_select(frame, context)
            session.reset()
            return candidate

        session.selector.select = select_then_reset
        result = session.process_frame(ball_frame)

        assert result.ball == BallCandidate.not_detected()
        assert session.get_statistics()["discarded_results"] == 1
        assert session.get_statistics()["frame_counter"] == 0

    def test_set_processing_mode(self, session, ball_frame):
        assert session.set_processing_mode("fast")
        assert session.processing_mode == ProcessingMode.FAST
        assert not session.set_processing_mode("turbo")
        assert session.processing_mode == ProcessingMode.FAST

        # A forced mode survives calibration
        session.process_frame(ball_frame)
        assert session.processing_mode == ProcessingMode.FAST

        assert session.set_processing_mode(ProcessingMode.ACCURATE)
        assert DetectionMethod.FREQUENCY in session.selector.methods

    def test_calibration_picks_mode(self, session):
        result = session.calibrate(np.full((120, 160, 3), 220, dtype=np.uint8))
        assert result.mode == ProcessingMode.FAST
        assert session.processing_mode == ProcessingMode.FAST
        assert session.profile.name == "bright"
        assert DetectionMethod.FREQUENCY not in session.selector.methods

    def test_unlock(self, session):
        session.lock_targets([_locked_target()])
        session.lock_boundary(BoundaryRegion(0, 0, 100, 100))
        session.unlock_targets()
        session.unlock_boundary()
        assert session.locked_targets is None
        assert session.locked_boundary is None

    def test_calibration_interval_from_calibration_section(self):
        session = DetectionSession({"calibration": {"interval_frames": 5}})
        assert session.config.calibration_interval_frames == 5

        explicit = DetectionSession(
            {"calibration_interval_frames": 7, "calibration": {"interval_frames": 5}}
        )
        assert explicit.config.calibration_interval_frames == 7

        config.set("vision.calibration.interval_frames", 12)
        assert DetectionSession().config.calibration_interval_frames == 12

    def test_history_smaller_than_warm_up_is_rejected(self):
        with pytest.raises(VisionSessionError):
            DetectionSession({"tracker": {"history_size": 2}})

    def test_values_from_config_file(self):
        config.set("vision.session.max_processing_fps", 0)
        config.set("vision.impact.tolerance_px", 25.0)
        session = DetectionSession()
        assert session.config.max_processing_fps == 0
        assert session.decider.tolerance_px == 25.0

        explicit = DetectionSession({"impact": {"tolerance_px": 5.0}})
        assert explicit.decider.tolerance_px == 5.0


class TestDetectionSessionAnalysis:
    def test_detect_motion(self, session):
        for _ in range(20):
            assert session.detect_motion(make_green_frame()) == []

        frame = make_green_frame()
        cv2.circle(frame, (200, 150), 20, (255, 255, 255), -1)
        regions = session.detect_motion(frame)

        assert len(regions) == 1
        assert DetectionUtils.calculate_distance(regions[0].center, (200, 150)) <= 3

    def test_analyze_frame_performance(self, session, green_frame):
        report = session.analyze_frame_performance(green_frame)
        assert report["frame_width"] == 640
        assert report["frame_height"] == 480
        assert report["average_brightness"] == pytest.approx(75, abs=2)
        assert report["processing_time_ms"] >= 0.0
        assert report["processing_mode"] == "balanced"

    def test_analyze_invalid_frame(self, session):
        report = session.analyze_frame_performance(None)
        assert report["frame_width"] == 0
        assert report["processing_time_ms"] == 0.0

    def test_statistics(self, session, ball_frame):
        _run(session, ball_frame, 2)
        stats = session.get_statistics()

        assert stats["frames_processed"] == 2
        assert stats["frame_counter"] == 2
        assert stats["ball_frames_detected"] == 2
        assert stats["ball_frames_missed"] == 0
        assert stats["tracker_state"] == TrackState.IDLE.value
        assert stats["lighting_condition"] == "low"
        assert stats["last_calibration_brightness"] is not None
        assert stats["avg_processing_time_ms"] > 0.0

    def test_events(self, session, ball_frame):
        processed, impacts = [], []
        assert session.subscribe_to_events("frame_processed", processed.append)
        assert session.subscribe_to_events("impact_detected", impacts.append)
        assert not session.subscribe_to_events("unknown", processed.append)

        session.lock_targets([_locked_target()])
        _run(session, ball_frame, 3)

        assert len(processed) == 3
        assert len(impacts) == 1
        assert impacts[0]["impactTargetNumber"] == 1

    def test_subscriber_can_call_back_into_session(self, session, ball_frame):
        regions = []
        session.subscribe_to_events(
            "frame_processed",
            lambda _: regions.append(session.detect_motion(ball_frame)),
        )

        worker = threading.Thread(
            target=session.process_frame, args=(ball_frame,), daemon=True
        )
        worker.start()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert len(regions) == 1

    def test_failing_callback_does_not_break_processing(self, session, ball_frame):
        def broken(_):
            raise RuntimeError("subscriber failed")

        session.subscribe_to_events("frame_processed", broken)
        assert session.process_frame(ball_frame) is not None


class TestExternalModelSession:
    class BallAtCenterModel:
        def predict(self, image):
            confidences = np.array([[0.95]], dtype=np.float32)
            boxes = np.array([[0.52, 0.5, 0.13, 0.13]], dtype=np.float32)
            return confidences, boxes

    def test_model_takes_precedence(self, ball_frame):
        session = DetectionSession(
            {"max_processing_fps": 0}, ball_model=self.BallAtCenterModel()
        )
        try:
            assert session.selector.methods[0] == DetectionMethod.EXTERNAL_MODEL
            result = session.process_frame(ball_frame)
            assert result.statistics.detection_method == (
                DetectionMethod.EXTERNAL_MODEL
            )
        finally:
            session.close()
