"""Tests for target and boundary detection."""

import cv2
import numpy as np
import pytest

from bounceback.vision.detection.targets import TargetDetector
from bounceback.vision.detection.utils import DetectionUtils
from bounceback.vision.models import BoundaryRegion, ProcessingMode, Target


def _target(center, quadrant=0, number=1):
    x, y = center
    return Target(
        center=center,
        radius=20,
        bounding_box=(x - 20, y - 20, 40, 40),
        target_number=number,
        quadrant=quadrant,
    )


class TestTargetDetection:
    def setup_method(self):
        self.detector = TargetDetector()

    def test_detects_yellow_disk(self, target_frame, moderate_profile):
        targets = self.detector.detect_targets(target_frame, moderate_profile)

        assert len(targets) == 1
        target = targets[0]
        assert target.target_number == 1
        assert DetectionUtils.calculate_distance(target.center, (320, 240)) <= 5
        assert target.radius == pytest.approx(60, abs=6)
        assert target.is_circular
        assert 0.0 <= target.confidence <= 1.0

    def test_fast_mode_also_detects(self, target_frame, moderate_profile):
        targets = self.detector.detect_targets(
            target_frame, moderate_profile, ProcessingMode.FAST
        )
        assert len(targets) == 1

    def test_no_targets_on_plain_field(self, green_frame, moderate_profile):
        assert self.detector.detect_targets(green_frame, moderate_profile) == []

    def test_contour_fallback_finds_disk(self, target_frame, moderate_profile):
        hsv = cv2.cvtColor(target_frame, cv2.COLOR_BGR2HSV)
        targets = self.detector._detect_contour_targets(hsv, moderate_profile)

        assert len(targets) == 1
        assert DetectionUtils.calculate_distance(targets[0].center, (320, 240)) <= 2
        assert targets[0].is_circular

    def test_uncolored_circle_is_not_a_target(self, moderate_profile):
        frame = np.full((480, 640, 3), 40, dtype=np.uint8)
        cv2.circle(frame, (320, 240), 60, (230, 230, 230), -1)
        assert self.detector.detect_targets(frame, moderate_profile) == []

    def test_invalid_frame(self, moderate_profile):
        assert self.detector.detect_targets(None, moderate_profile) == []


class TestBoundaryDetection:
    def setup_method(self):
        self.detector = TargetDetector()

    def test_detects_tape_rectangle(self, boundary_frame, moderate_profile):
        boundary = self.detector.detect_boundary(boundary_frame, moderate_profile)

        assert boundary is not None
        assert boundary.x == pytest.approx(94, abs=2)
        assert boundary.y == pytest.approx(74, abs=2)
        assert boundary.width == pytest.approx(412, abs=3)
        assert boundary.height == pytest.approx(312, abs=3)

    def test_no_tape(self, green_frame, moderate_profile):
        assert self.detector.detect_boundary(green_frame, moderate_profile) is None

    def test_small_tape_fragment_rejected(self, moderate_profile):
        frame = np.full((480, 640, 3), 40, dtype=np.uint8)
        cv2.rectangle(frame, (100, 100), (140, 130), (255, 0, 255), -1)
        assert self.detector.detect_boundary(frame, moderate_profile) is None


class TestQuadrants:
    boundary = BoundaryRegion(40, 100, 320, 240)

    @pytest.mark.parametrize(
        ("point", "quadrant"),
        [((150, 150), 1), ((250, 150), 2), ((150, 300), 3), ((250, 300), 4)],
    )
    def test_get_quadrant(self, point, quadrant):
        assert TargetDetector.get_quadrant(point, self.boundary) == quadrant

    def test_midpoint_lines_belong_to_higher_quadrant(self):
        assert TargetDetector.get_quadrant((200, 150), self.boundary) == 2
        assert TargetDetector.get_quadrant((150, 220), self.boundary) == 3

    def test_assign_only_unassigned(self):
        targets = [_target((150, 150)), _target((250, 300), quadrant=1, number=2)]
        assigned = TargetDetector.assign_quadrants(targets, self.boundary)
        assert [t.quadrant for t in assigned] == [1, 1]

    def test_no_boundary_leaves_targets(self):
        targets = [_target((150, 150))]
        assert TargetDetector.assign_quadrants(targets, None) == targets
