"""Tests for the unified selector."""

import numpy as np
import pytest

from bounceback.vision.detection.balls import BallDetectionStrategy
from bounceback.vision.detection.selector import UnifiedSelector
from bounceback.vision.models import BallCandidate, DetectionMethod, ProcessingMode


class FakeStrategy(BallDetectionStrategy):
    def __init__(self, method, position=None, confidence=0.5, error=None):
        self.method = method
        self.position = position
        self.confidence = confidence
        self.error = error
        self.calls = 0
        self.resets = 0

    def detect(self, frame, context=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.position is None:
            return BallCandidate.not_detected()
        return BallCandidate.detected(self.position, 10, self.confidence, self.method)

    def reset(self):
        self.resets += 1


def _strategies(**positions):
    return {
        method: FakeStrategy(method, positions.get(method.value))
        for method in (
            DetectionMethod.SHAPE,
            DetectionMethod.BALL_SPECIFIC,
            DetectionMethod.COLOR,
            DetectionMethod.FREQUENCY,
            DetectionMethod.MOTION,
        )
    }


@pytest.fixture()
def frame():
    return np.zeros((120, 160, 3), dtype=np.uint8)


class TestUnifiedSelector:
    def test_chain_order_and_frequency_only_when_accurate(self):
        strategies = _strategies()
        balanced = UnifiedSelector.build(strategies, ProcessingMode.BALANCED)
        accurate = UnifiedSelector.build(strategies, ProcessingMode.ACCURATE)

        assert balanced.methods == [
            DetectionMethod.BALL_SPECIFIC,
            DetectionMethod.SHAPE,
            DetectionMethod.COLOR,
            DetectionMethod.MOTION,
        ]
        assert DetectionMethod.FREQUENCY in accurate.methods

    def test_ball_specific_wins_with_fixed_weight(self, frame):
        strategies = _strategies(ball_specific=(50, 50), shape=(80, 80))
        selector = UnifiedSelector.build(strategies)

        best = selector.select(frame)

        assert best.method == DetectionMethod.BALL_SPECIFIC
        assert best.position == (50, 50)
        assert best.confidence == pytest.approx(0.9)

    def test_gates_skip_weaker_strategies(self, frame):
        strategies = _strategies(ball_specific=(50, 50))
        selector = UnifiedSelector.build(strategies)

        selector.select(frame)

        assert strategies[DetectionMethod.SHAPE].calls == 0
        assert strategies[DetectionMethod.COLOR].calls == 0
        assert strategies[DetectionMethod.MOTION].calls == 0

    def test_falls_back_through_chain(self, frame):
        strategies = _strategies(color=(20, 30))
        selector = UnifiedSelector.build(strategies)

        best = selector.select(frame)

        assert best.method == DetectionMethod.COLOR
        assert best.confidence == pytest.approx(0.4)
        assert strategies[DetectionMethod.MOTION].calls == 0

    def test_motion_is_last_resort(self, frame):
        strategies = _strategies(motion=(20, 30))
        best = UnifiedSelector.build(strategies).select(frame)
        assert best.method == DetectionMethod.MOTION
        assert best.confidence == pytest.approx(0.3)

    def test_external_model_runs_first_and_always(self, frame):
        strategies = _strategies(ball_specific=(50, 50))
        strategies[DetectionMethod.EXTERNAL_MODEL] = FakeStrategy(
            DetectionMethod.EXTERNAL_MODEL, (60, 60), confidence=0.99
        )
        selector = UnifiedSelector.build(strategies)

        best = selector.select(frame)

        assert selector.methods[0] == DetectionMethod.EXTERNAL_MODEL
        assert best.method == DetectionMethod.EXTERNAL_MODEL
        assert best.confidence == pytest.approx(0.9)
        assert strategies[DetectionMethod.BALL_SPECIFIC].calls == 0

    def test_no_detection_is_sentinel(self, frame):
        selector = UnifiedSelector.build(_strategies())
        assert selector.select(frame) == BallCandidate.not_detected()
        assert selector.get_statistics()["no_detection"] == 1

    def test_failing_strategy_is_skipped(self, frame):
        strategies = _strategies(shape=(70, 70))
        strategies[DetectionMethod.BALL_SPECIFIC].error = RuntimeError("boom")
        selector = UnifiedSelector.build(strategies)

        best = selector.select(frame)

        assert best.method == DetectionMethod.SHAPE
        assert selector.get_statistics()["strategy_errors"] == 1

    def test_configured_weights(self, frame):
        strategies = _strategies(shape=(70, 70))
        selector = UnifiedSelector.build(
            strategies, config={"weights": {"shape": 0.75}}
        )
        assert selector.select(frame).confidence == pytest.approx(0.75)

    def test_reset_reaches_strategies(self):
        strategies = _strategies()
        UnifiedSelector.build(strategies).reset()
        assert strategies[DetectionMethod.MOTION].resets == 1
