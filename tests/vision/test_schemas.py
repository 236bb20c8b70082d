"""Tests for the frame result message models."""

import pytest
from pydantic import ValidationError

from bounceback.vision import DetectionSession
from bounceback.vision.models import (
    BallCandidate,
    BoundaryRegion,
    DetectionMethod,
    FrameResult,
    ImpactEvent,
    Target,
)
from bounceback.vision.schemas import (
    BallStateModel,
    FrameResultModel,
    frame_result_payload,
    validate_frame_result,
)


def _ball_dict(**overrides):
    data = {
        "x": -1,
        "y": -1,
        "radius": 0.0,
        "isDetected": False,
        "confidence": 0.0,
        "method": "none",
    }
    data.update(overrides)
    return data


class TestFrameResultModel:
    def test_empty_result(self):
        model = validate_frame_result(FrameResult())
        assert model.ball.is_detected is False
        assert model.boundary_region.width == 0
        assert model.statistics is None

    def test_impact_result(self):
        result = FrameResult(
            targets=[
                Target(
                    center=(300, 300),
                    radius=40,
                    bounding_box=(260, 260, 80, 80),
                    target_number=1,
                    quadrant=2,
                )
            ],
            boundary_region=BoundaryRegion(100, 100, 400, 300),
            ball=BallCandidate.detected((310, 300), 12, 0.8, DetectionMethod.SHAPE),
            impact=ImpactEvent(did_occur=True, target_number=1, distance=10.0),
        )
        payload = frame_result_payload(result)

        assert payload["impact"] is True
        assert payload["impactTargetNumber"] == 1
        assert payload["targets"][0]["centerX"] == 300
        assert payload["ball"]["method"] == "shape"
        assert payload["boundaryRegion"]["width"] == 400

    def test_session_output_validates(self, ball_frame):
        session = DetectionSession({"max_processing_fps": 0})
        for _ in range(3):
            model = validate_frame_result(session.process_frame(ball_frame))
            assert 0.0 <= model.ball.confidence <= 1.0
            assert model.statistics is not None

    def test_sentinel_must_use_negative_position(self):
        with pytest.raises(ValidationError):
            BallStateModel.model_validate(_ball_dict(x=10, y=10))

    def test_confidence_out_of_range(self):
        with pytest.raises(ValidationError):
            BallStateModel.model_validate(
                _ball_dict(x=5, y=5, isDetected=True, confidence=1.5)
            )

    def test_impact_requires_detected_ball(self):
        with pytest.raises(ValidationError):
            FrameResultModel.model_validate(
                {"ball": _ball_dict(), "impact": True, "impactTargetNumber": 1}
            )

    def test_impact_target_number_only_with_impact(self):
        with pytest.raises(ValidationError):
            FrameResultModel.model_validate(
                {
                    "ball": _ball_dict(x=5, y=5, isDetected=True, confidence=0.5),
                    "impact": False,
                    "impactTargetNumber": 2,
                }
            )

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            FrameResultModel.model_validate({"ball": _ball_dict(), "extra": 1})
