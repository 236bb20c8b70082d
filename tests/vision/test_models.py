"""Tests for vision data models."""

import math

import pytest

from bounceback.vision.models import (
    BallCandidate,
    BoundaryRegion,
    DetectionMethod,
    FrameResult,
    FrameStatistics,
    ImpactEvent,
    Target,
    TrackerState,
    TrackState,
    clamp_confidence,
)


class TestClampConfidence:
    @pytest.mark.parametrize(
        ("value", "expected"), [(-0.5, 0.0), (0.4, 0.4), (1.7, 1.0), (math.nan, 0.0)]
    )
    def test_clamps_into_unit_interval(self, value, expected):
        assert clamp_confidence(value) == expected


class TestBallCandidate:
    def test_sentinel(self):
        ball = BallCandidate.not_detected()
        assert ball.position == (-1, -1)
        assert ball.confidence == 0.0
        assert ball.radius == 0
        assert not ball.is_detected
        assert ball.method == DetectionMethod.NONE

    def test_undetected_candidate_is_normalized_to_sentinel(self):
        ball = BallCandidate(position=(50, 60), radius=9, confidence=0.8)
        assert ball == BallCandidate.not_detected()

    def test_detected_rounds_position_and_clamps_confidence(self):
        ball = BallCandidate.detected(
            (10.6, 20.4), 12.0, 1.4, DetectionMethod.SHAPE
        )
        assert ball.is_detected
        assert ball.position == (11, 20)
        assert ball.confidence == 1.0

    def test_translated_moves_detected_only(self):
        ball = BallCandidate.detected((10, 20), 5.0, 0.5, DetectionMethod.COLOR)
        assert ball.translated(100, 50).position == (110, 70)
        sentinel = BallCandidate.not_detected()
        assert sentinel.translated(100, 50) == sentinel

    def test_with_confidence_keeps_sentinel(self):
        assert BallCandidate.not_detected().with_confidence(0.9).confidence == 0.0

    def test_to_dict(self):
        ball = BallCandidate.detected((10, 20), 5.0, 0.5, DetectionMethod.MOTION)
        assert ball.to_dict() == {
            "x": 10,
            "y": 20,
            "radius": 5.0,
            "isDetected": True,
            "confidence": 0.5,
            "method": "motion",
        }


class TestBoundaryRegion:
    def test_midpoint_uses_integer_division(self):
        assert BoundaryRegion(40, 100, 320, 240).midpoint == (200, 220)
        assert BoundaryRegion(0, 0, 5, 7).midpoint == (2, 3)

    def test_contains_is_inclusive(self):
        region = BoundaryRegion(10, 10, 100, 50)
        assert region.contains((10, 10))
        assert region.contains((110, 60))
        assert not region.contains((111, 60))

    def test_clamp_to_frame(self):
        region = BoundaryRegion(-20, 400, 700, 200)
        assert region.clamp_to((480, 640, 3)) == BoundaryRegion(0, 400, 640, 80)

    def test_clamp_outside_frame_is_none(self):
        assert BoundaryRegion(700, 500, 10, 10).clamp_to((480, 640, 3)) is None

    def test_empty(self):
        assert BoundaryRegion.empty().is_empty


class TestTarget:
    def test_rejects_invalid_quadrant(self):
        with pytest.raises(ValueError):
            Target(center=(0, 0), radius=10, bounding_box=(0, 0, 1, 1), quadrant=5)

    def test_translated_moves_center_and_box(self):
        target = Target(center=(100, 100), radius=20, bounding_box=(80, 80, 40, 40))
        moved = target.translated(-50, -30)
        assert moved.center == (50, 70)
        assert moved.bounding_box == (30, 50, 40, 40)
        assert moved.radius == 20

    def test_to_dict(self):
        target = Target(
            center=(300, 200),
            radius=40.0,
            bounding_box=(260, 160, 80, 80),
            target_number=2,
            quadrant=3,
        )
        data = target.to_dict()
        assert data["centerX"] == 300
        assert data["targetNumber"] == 2
        assert data["quadrant"] == 3
        assert data["isCircular"] is True


class TestTrackerState:
    def test_history_is_bounded(self):
        state = TrackerState(history_size=3)
        for i in range(5):
            state.position_history.append((i, i))
        assert list(state.position_history) == [(2, 2), (3, 3), (4, 4)]

    def test_reset(self):
        state = TrackerState()
        state.state = TrackState.TRACKING
        state.position_history.append((1, 1))
        state.last_accepted_frame_index = 7
        state.consecutive_misses = 2
        state.reset()
        assert state.state == TrackState.IDLE
        assert len(state.position_history) == 0
        assert state.last_accepted_frame_index is None
        assert state.consecutive_misses == 0


class TestFrameResult:
    def test_default_is_empty_record(self):
        data = FrameResult().to_dict()
        assert data["targets"] == []
        assert data["boundaryRegion"] == {"x": 0, "y": 0, "width": 0, "height": 0}
        assert data["ball"]["isDetected"] is False
        assert data["impact"] is False
        assert data["impactTargetNumber"] is None
        assert "statistics" not in data

    def test_impact_target_number(self):
        result = FrameResult(
            ball=BallCandidate.detected((5, 5), 3, 0.9, DetectionMethod.SHAPE),
            impact=ImpactEvent(did_occur=True, target_number=2, distance=4.0),
            statistics=FrameStatistics(frame_number=3),
        )
        data = result.to_dict()
        assert data["impact"] is True
        assert data["impactTargetNumber"] == 2
        assert data["statistics"]["frameNumber"] == 3
