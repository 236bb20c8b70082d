"""Goal boundary and scoring target detection.

Targets are found with a two-stage search per frame:
- Hough circles on blurred grayscale, confirmed by target color membership
- Color segmentation with contour geometry when no circle is confirmed

The boundary is the bounding rectangle of the convex hull of all tape-colored
contours. Quadrants split the boundary at its midpoint lines.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from ..calibration.color import ColorProfile
from ..models import BoundaryRegion, ProcessingMode, Target
from .utils import DetectionUtils

logger = logging.getLogger(__name__)


@dataclass
class TargetDetectionConfig:
    """Configuration for target and boundary detection."""

    # Hough circle parameters
    blur_kernel: int = 11
    blur_sigma: float = 3.0
    hough_dp: float = 1.0
    hough_min_dist_divisor: float = 6.0  # minDist = rows / divisor
    hough_param1: float = 120
    hough_param2: float = 35
    min_radius: int = 30
    max_radius: int = 120
    hough_match_percentage: float = 15.0

    # Contour fallback
    morph_kernel: int = 5
    min_contour_area: float = 2000
    max_contour_area: float = 50000
    min_aspect_ratio: float = 0.9
    max_aspect_ratio: float = 1.1
    contour_match_percentage: float = 30.0
    circular_threshold: float = 0.7

    # Boundary tape
    boundary_morph_kernel: int = 7
    boundary_min_contour_area: float = 300
    boundary_min_hull_area: float = 5000

    # Contrast enhancement
    clahe_clip_limit: float = 2.0
    clahe_tile_grid_size: int = 8

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "TargetDetectionConfig":
        hough = config.get("hough", {})
        contour = config.get("contour", {})
        boundary = config.get("boundary", {})
        clahe = config.get("clahe", {})

        return cls(
            blur_kernel=hough.get("blur_kernel", 11),
            blur_sigma=hough.get("blur_sigma", 3.0),
            hough_dp=hough.get("dp", 1.0),
            hough_min_dist_divisor=hough.get("min_dist_divisor", 6.0),
            hough_param1=hough.get("param1", 120),
            hough_param2=hough.get("param2", 35),
            min_radius=hough.get("min_radius", 30),
            max_radius=hough.get("max_radius", 120),
            hough_match_percentage=hough.get("match_percentage", 15.0),
            morph_kernel=contour.get("morph_kernel", 5),
            min_contour_area=contour.get("min_area", 2000),
            max_contour_area=contour.get("max_area", 50000),
            min_aspect_ratio=contour.get("min_aspect_ratio", 0.9),
            max_aspect_ratio=contour.get("max_aspect_ratio", 1.1),
            contour_match_percentage=contour.get("match_percentage", 30.0),
            circular_threshold=contour.get("circular_threshold", 0.7),
            boundary_morph_kernel=boundary.get("morph_kernel", 7),
            boundary_min_contour_area=boundary.get("min_contour_area", 300),
            boundary_min_hull_area=boundary.get("min_hull_area", 5000),
            clahe_clip_limit=clahe.get("clip_limit", 2.0),
            clahe_tile_grid_size=clahe.get("tile_grid_size", 8),
        )


class TargetDetector:
    """Find scoring targets and the goal boundary in a frame."""

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        self.config = TargetDetectionConfig.from_config(config or {})
        self.stats = {
            "target_passes": 0,
            "hough_hits": 0,
            "contour_hits": 0,
            "boundary_passes": 0,
            "boundary_hits": 0,
        }

    def detect_targets(
        self,
        frame: NDArray[np.uint8],
        profile: ColorProfile,
        mode: ProcessingMode = ProcessingMode.BALANCED,
    ) -> list[Target]:
        """Detect targets, numbered 1..n in detection order.

        Args:
            frame: BGR frame
            profile: Active color profile
            mode: Fast mode skips contrast enhancement

        Returns:
            Targets found; empty when nothing matches
        """
        if not DetectionUtils.is_valid_frame(frame):
            return []

        self.stats["target_passes"] += 1
        if mode != ProcessingMode.FAST:
            frame = DetectionUtils.enhance_contrast(
                frame, self.config.clahe_clip_limit, self.config.clahe_tile_grid_size
            )
        hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)

        targets = self._detect_hough_targets(frame, hsv, profile)
        if targets:
            self.stats["hough_hits"] += 1
        else:
            targets = self._detect_contour_targets(hsv, profile)
            if targets:
                self.stats["contour_hits"] += 1

        numbered = [
            target.with_number(index) for index, target in enumerate(targets, start=1)
        ]
        if numbered:
            logger.debug(f"Detected {len(numbered)} target(s)")
        return numbered

    def _detect_hough_targets(
        self,
        frame: NDArray[np.uint8],
        hsv: NDArray[np.uint8],
        profile: ColorProfile,
    ) -> list[Target]:
        cfg = self.config
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        blurred = cv2.GaussianBlur(
            gray, (cfg.blur_kernel, cfg.blur_kernel), cfg.blur_sigma
        )
        circles = DetectionUtils.find_circles(
            blurred,
            min_radius=cfg.min_radius,
            max_radius=cfg.max_radius,
            param1=cfg.hough_param1,
            param2=cfg.hough_param2,
            min_dist=gray.shape[0] / cfg.hough_min_dist_divisor,
            dp=cfg.hough_dp,
        )

        required = profile.match_threshold(cfg.hough_match_percentage)
        targets = []
        for circle in circles:
            roi = DetectionUtils.circle_roi(circle.center, circle.radius, frame.shape)
            if roi is None:
                continue
            match = max(
                DetectionUtils.color_match_percentage(hsv, roi, thresholds)
                for thresholds in profile.target_colors
            )
            if match <= required:
                continue
            targets.append(
                Target(
                    center=circle.center,
                    radius=float(circle.radius),
                    bounding_box=roi,
                    is_circular=True,
                    confidence=min(1.0, match / 50.0),
                )
            )
        return targets

    def _detect_contour_targets(
        self, hsv: NDArray[np.uint8], profile: ColorProfile
    ) -> list[Target]:
        cfg = self.config
        required = profile.match_threshold(cfg.contour_match_percentage)
        targets: list[Target] = []

        for thresholds in profile.target_colors:
            mask = DetectionUtils.apply_morphological_operations(
                thresholds.apply_mask(hsv),
                ("close", "open"),
                cfg.morph_kernel,
            )
            for contour in DetectionUtils.find_external_contours(mask):
                area = cv2.contourArea(contour)
                if not cfg.min_contour_area < area < cfg.max_contour_area:
                    continue

                x, y, w, h = cv2.boundingRect(contour)
                aspect = DetectionUtils.aspect_ratio(w, h)
                if not cfg.min_aspect_ratio < aspect < cfg.max_aspect_ratio:
                    continue

                match = DetectionUtils.color_match_percentage(
                    hsv, (x, y, w, h), thresholds
                )
                if match <= required:
                    continue

                center = (x + w // 2, y + h // 2)
                radius = max(w, h) / 2.0
                if any(
                    DetectionUtils.calculate_distance(center, t.center) < t.radius
                    for t in targets
                ):
                    continue

                circularity = DetectionUtils.contour_circularity(contour)
                targets.append(
                    Target(
                        center=center,
                        radius=radius,
                        bounding_box=(x, y, w, h),
                        is_circular=circularity >= cfg.circular_threshold,
                        confidence=min(1.0, match / 100.0),
                    )
                )
        return targets

    def detect_boundary(
        self, frame: NDArray[np.uint8], profile: ColorProfile
    ) -> Optional[BoundaryRegion]:
        """Bounding rectangle of the tape's convex hull, or None."""
        if not DetectionUtils.is_valid_frame(frame):
            return None

        cfg = self.config
        self.stats["boundary_passes"] += 1
        hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)
        mask = DetectionUtils.apply_morphological_operations(
            profile.boundary_tape.apply_mask(hsv),
            ("close", "open"),
            cfg.boundary_morph_kernel,
            cv2.MORPH_RECT,
        )

        points = [
            contour
            for contour in DetectionUtils.find_external_contours(mask)
            if cv2.contourArea(contour) > cfg.boundary_min_contour_area
        ]
        if not points:
            return None

        hull = cv2.convexHull(np.vstack(points))
        if cv2.contourArea(hull) <= cfg.boundary_min_hull_area:
            return None

        x, y, w, h = cv2.boundingRect(hull)
        self.stats["boundary_hits"] += 1
        return BoundaryRegion(int(x), int(y), int(w), int(h))

    @staticmethod
    def get_quadrant(point: tuple[float, float], boundary: BoundaryRegion) -> int:
        """Quadrant 1-4 of a point; ties on a midpoint line go to the higher side."""
        mid_x, mid_y = boundary.midpoint
        x, y = point
        if y < mid_y:
            return 1 if x < mid_x else 2
        return 3 if x < mid_x else 4

    @classmethod
    def assign_quadrants(
        cls, targets: list[Target], boundary: Optional[BoundaryRegion]
    ) -> list[Target]:
        """Assign quadrants to targets that have none yet."""
        if boundary is None or boundary.is_empty:
            return list(targets)
        return [
            target.with_quadrant(cls.get_quadrant(target.center, boundary))
            if target.quadrant == 0
            else target
            for target in targets
        ]

    def get_statistics(self) -> dict[str, Any]:
        return self.stats.copy()
