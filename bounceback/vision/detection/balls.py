"""Single-frame ball detection strategies.

Provides the classical members of the detection ensemble:
- Shape: Hough circles confirmed by Otsu contour circularity
- BallSpecific: joint white/black segmentation scored by area x circularity
- Color: multi-range color segmentation with target exclusion
- Frequency: circular symmetry in the low-passed magnitude spectrum
- Motion: MOG2 background subtraction

Every strategy returns a BallCandidate and never raises for an empty or
unusable frame; "not detected" is reported with the sentinel candidate.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import cv2
import numpy as np
from numpy.typing import NDArray

from ..calibration.color import DEFAULT_PROFILES, ColorProfile, ColorThresholds
from ..models import (
    BallCandidate,
    DetectionMethod,
    LightingCondition,
    MotionRegion,
    Point,
    Target,
)
from .utils import DetectionUtils

logger = logging.getLogger(__name__)


@dataclass
class DetectionContext:
    """Per-frame information shared with the strategies."""

    profile: Optional[ColorProfile] = None
    targets: Sequence[Target] = ()
    recent_positions: Sequence[Point] = ()

    @property
    def active_profile(self) -> ColorProfile:
        return self.profile or DEFAULT_PROFILES[LightingCondition.MODERATE]


class BallDetectionStrategy(ABC):
    """Common interface of all ball detection strategies."""

    method: DetectionMethod = DetectionMethod.NONE

    @abstractmethod
    def detect(
        self, frame: NDArray[np.uint8], context: Optional[DetectionContext] = None
    ) -> BallCandidate:
        """Detect the ball in a BGR frame.

        Args:
            frame: Input frame in BGR format
            context: Active color profile, known targets and recent positions

        Returns:
            The best candidate, or the not-detected sentinel
        """

    def reset(self) -> None:
        """Drop any internal frame history. Stateless strategies do nothing."""

    @property
    def name(self) -> str:
        return self.method.value


# =============================================================================
# Shape
# =============================================================================


@dataclass
class ShapeDetectionConfig:
    blur_kernel: int = 9
    blur_sigma: float = 2.0
    min_dist_divisor: float = 6.0
    param1: float = 100
    param2: float = 30
    min_radius: int = 5
    max_radius: int = 50
    min_area: float = 200
    max_area: float = 50000
    min_circularity: float = 0.5

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ShapeDetectionConfig":
        hough = config.get("hough", {})
        size = config.get("size", {})
        return cls(
            blur_kernel=hough.get("blur_kernel", 9),
            blur_sigma=hough.get("blur_sigma", 2.0),
            min_dist_divisor=hough.get("min_dist_divisor", 6.0),
            param1=hough.get("param1", 100),
            param2=hough.get("param2", 30),
            min_radius=size.get("min_radius", 5),
            max_radius=size.get("max_radius", 50),
            min_area=size.get("min_area", 200),
            max_area=size.get("max_area", 50000),
            min_circularity=config.get("min_circularity", 0.5),
        )


class ShapeDetector(BallDetectionStrategy):
    """Hough circles whose Otsu-binarized patch is round enough.

    The first circle (in accumulator order) that passes wins.
    """

    method = DetectionMethod.SHAPE

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        self.config = ShapeDetectionConfig.from_config(config or {})

    def detect(
        self, frame: NDArray[np.uint8], context: Optional[DetectionContext] = None
    ) -> BallCandidate:
        if not DetectionUtils.is_valid_frame(frame):
            return BallCandidate.not_detected()

        cfg = self.config
        gray = DetectionUtils.to_gray(frame)
        blurred = cv2.GaussianBlur(
            gray, (cfg.blur_kernel, cfg.blur_kernel), cfg.blur_sigma
        )
        circles = DetectionUtils.find_circles(
            blurred,
            min_radius=cfg.min_radius,
            max_radius=cfg.max_radius,
            param1=cfg.param1,
            param2=cfg.param2,
            min_dist=gray.shape[0] / cfg.min_dist_divisor,
        )

        for circle in circles:
            if not cfg.min_area <= circle.area <= cfg.max_area:
                continue
            roi = DetectionUtils.circle_roi(circle.center, circle.radius, gray.shape)
            if roi is None:
                continue
            circularity = _patch_circularity(gray, roi)
            if circularity > cfg.min_circularity:
                return BallCandidate.detected(
                    circle.center, circle.radius, circularity, self.method
                )

        return BallCandidate.not_detected()


def _patch_circularity(
    gray: NDArray[np.uint8], roi: tuple[int, int, int, int]
) -> float:
    """Circularity of the largest Otsu contour inside a grayscale patch."""
    x, y, w, h = roi
    patch = gray[y : y + h, x : x + w]
    if patch.size == 0:
        return 0.0
    _, binary = cv2.threshold(patch, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
    contours = DetectionUtils.find_external_contours(binary)
    if not contours:
        return 0.0
    largest = max(contours, key=cv2.contourArea)
    return DetectionUtils.contour_circularity(largest)


# =============================================================================
# Ball-specific (two-tone)
# =============================================================================


@dataclass
class BallSpecificConfig:
    blur_kernel: int = 7
    blur_sigma: float = 2.0
    white_lower: tuple[int, int, int] = (0, 0, 180)
    white_upper: tuple[int, int, int] = (180, 50, 255)
    black_lower: tuple[int, int, int] = (0, 0, 0)
    black_upper: tuple[int, int, int] = (180, 255, 60)
    morph_kernel: int = 5
    min_area: float = 500
    max_area: float = 20000
    min_circularity: float = 0.7

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "BallSpecificConfig":
        colors = config.get("colors", {})
        white = colors.get("white", {})
        black = colors.get("black", {})
        return cls(
            blur_kernel=config.get("blur_kernel", 7),
            blur_sigma=config.get("blur_sigma", 2.0),
            white_lower=tuple(white.get("lower", (0, 0, 180))),
            white_upper=tuple(white.get("upper", (180, 50, 255))),
            black_lower=tuple(black.get("lower", (0, 0, 0))),
            black_upper=tuple(black.get("upper", (180, 255, 60))),
            morph_kernel=config.get("morph_kernel", 5),
            min_area=config.get("min_area", 500),
            max_area=config.get("max_area", 20000),
            min_circularity=config.get("min_circularity", 0.7),
        )


class BallSpecificDetector(BallDetectionStrategy):
    """Two-tone (white and black panel) ball model.

    Every contour of the joint mask is scored by area x circularity and the
    best one is reported with its minimum enclosing circle.
    """

    method = DetectionMethod.BALL_SPECIFIC

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        self.config = BallSpecificConfig.from_config(config or {})

    def detect(
        self, frame: NDArray[np.uint8], context: Optional[DetectionContext] = None
    ) -> BallCandidate:
        if not DetectionUtils.is_valid_frame(frame):
            return BallCandidate.not_detected()

        cfg = self.config
        blurred = cv2.GaussianBlur(
            frame, (cfg.blur_kernel, cfg.blur_kernel), cfg.blur_sigma
        )
        hsv = cv2.cvtColor(blurred, cv2.COLOR_BGR2HSV)
        mask = cv2.bitwise_or(
            cv2.inRange(hsv, cfg.white_lower, cfg.white_upper),
            cv2.inRange(hsv, cfg.black_lower, cfg.black_upper),
        )
        mask = DetectionUtils.apply_morphological_operations(
            mask, ("open", "close"), cfg.morph_kernel
        )

        best_score = 0.0
        best_contour = None
        best_circularity = 0.0
        for contour in DetectionUtils.find_external_contours(mask):
            area = cv2.contourArea(contour)
            if not cfg.min_area <= area <= cfg.max_area:
                continue
            circularity = DetectionUtils.contour_circularity(contour)
            if circularity < cfg.min_circularity:
                continue
            score = area * circularity
            if score > best_score:
                best_score = score
                best_contour = contour
                best_circularity = circularity

        if best_contour is None:
            return BallCandidate.not_detected()

        (x, y), radius = cv2.minEnclosingCircle(best_contour)
        return BallCandidate.detected((x, y), radius, best_circularity, self.method)


# =============================================================================
# Color
# =============================================================================


@dataclass
class ColorDetectionConfig:
    morph_kernel: int = 5
    min_area: float = 200
    max_area: float = 50000
    min_aspect_ratio: float = 0.9
    max_aspect_ratio: float = 1.1
    min_circularity: float = 0.5
    target_exclusion_radius: float = 50.0
    match_percentage: float = 30.0
    enhance_contrast: bool = True

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ColorDetectionConfig":
        return cls(
            morph_kernel=config.get("morph_kernel", 5),
            min_area=config.get("min_area", 200),
            max_area=config.get("max_area", 50000),
            min_aspect_ratio=config.get("min_aspect_ratio", 0.9),
            max_aspect_ratio=config.get("max_aspect_ratio", 1.1),
            min_circularity=config.get("min_circularity", 0.5),
            target_exclusion_radius=config.get("target_exclusion_radius", 50.0),
            match_percentage=config.get("match_percentage", 30.0),
            enhance_contrast=config.get("enhance_contrast", True),
        )


class ColorDetector(BallDetectionStrategy):
    """Largest round blob over an ordered list of color ranges.

    Ranges are tried as white, target color A, accent, target color B.
    Blobs near a known target center are ignored so the target itself is
    not mistaken for the ball.
    """

    method = DetectionMethod.COLOR

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        self.config = ColorDetectionConfig.from_config(config or {})

    @staticmethod
    def color_ranges(profile: ColorProfile) -> list[ColorThresholds]:
        return [
            profile.ball_white,
            profile.target_a,
            profile.ball_accent,
            profile.target_b,
        ]

    def detect(
        self, frame: NDArray[np.uint8], context: Optional[DetectionContext] = None
    ) -> BallCandidate:
        if not DetectionUtils.is_valid_frame(frame):
            return BallCandidate.not_detected()

        cfg = self.config
        context = context or DetectionContext()
        if cfg.enhance_contrast:
            frame = DetectionUtils.enhance_contrast(frame)
        hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)
        target_centers = [target.center for target in context.targets]

        best_area = 0.0
        best: Optional[BallCandidate] = None
        for thresholds in self.color_ranges(context.active_profile):
            mask = DetectionUtils.apply_morphological_operations(
                thresholds.apply_mask(hsv), ("open", "close"), cfg.morph_kernel
            )
            for contour in DetectionUtils.find_external_contours(mask):
                area = cv2.contourArea(contour)
                if not cfg.min_area < area < cfg.max_area or area <= best_area:
                    continue

                x, y, w, h = cv2.boundingRect(contour)
                aspect = DetectionUtils.aspect_ratio(w, h)
                if not cfg.min_aspect_ratio < aspect < cfg.max_aspect_ratio:
                    continue

                center = (x + w // 2, y + h // 2)
                if any(
                    DetectionUtils.calculate_distance(center, target_center)
                    < cfg.target_exclusion_radius
                    for target_center in target_centers
                ):
                    continue

                circularity = DetectionUtils.contour_circularity(contour)
                if circularity <= cfg.min_circularity:
                    continue

                match = DetectionUtils.color_match_percentage(
                    hsv, (x, y, w, h), thresholds
                )
                if match < cfg.match_percentage:
                    continue

                best_area = area
                best = BallCandidate.detected(
                    center, max(w, h) / 2.0, circularity, self.method
                )

        return best or BallCandidate.not_detected()


# =============================================================================
# Frequency domain
# =============================================================================


@dataclass
class FrequencyDetectionConfig:
    blur_kernel: int = 5
    lowpass_divisor: float = 6.0
    min_dist_divisor: float = 8.0
    param1: float = 120
    param2: float = 25
    min_radius_floor: int = 5
    min_radius_ratio: float = 0.02
    max_radius_cap: int = 150
    max_radius_ratio: float = 0.3
    min_contrast: float = 15.0
    contrast_scale: float = 50.0
    min_circularity: float = 0.5
    min_score: float = 0.5
    max_history_distance: float = 100.0
    contrast_weight: float = 0.4
    size_weight: float = 0.3
    circularity_weight: float = 0.3

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "FrequencyDetectionConfig":
        hough = config.get("hough", {})
        radius = config.get("radius", {})
        weights = config.get("weights", {})
        return cls(
            blur_kernel=config.get("blur_kernel", 5),
            lowpass_divisor=config.get("lowpass_divisor", 6.0),
            min_dist_divisor=hough.get("min_dist_divisor", 8.0),
            param1=hough.get("param1", 120),
            param2=hough.get("param2", 25),
            min_radius_floor=radius.get("min_floor", 5),
            min_radius_ratio=radius.get("min_ratio", 0.02),
            max_radius_cap=radius.get("max_cap", 150),
            max_radius_ratio=radius.get("max_ratio", 0.3),
            min_contrast=config.get("min_contrast", 15.0),
            contrast_scale=config.get("contrast_scale", 50.0),
            min_circularity=config.get("min_circularity", 0.5),
            min_score=config.get("min_score", 0.5),
            max_history_distance=config.get("max_history_distance", 100.0),
            contrast_weight=weights.get("contrast", 0.4),
            size_weight=weights.get("size", 0.3),
            circularity_weight=weights.get("circularity", 0.3),
        )


class FrequencyDetector(BallDetectionStrategy):
    """Circular symmetry in the low-passed log-magnitude spectrum.

    Candidate circles are scored by local contrast, closeness to the middle
    of the radius range and Otsu circularity. When recent positions are
    known, the average distance to them must stay below
    ``max_history_distance``.
    """

    method = DetectionMethod.FREQUENCY

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        self.config = FrequencyDetectionConfig.from_config(config or {})

    def radius_bounds(self, frame_shape: tuple[int, ...]) -> tuple[int, int]:
        cfg = self.config
        min_dim = min(frame_shape[:2])
        min_radius = max(cfg.min_radius_floor, int(min_dim * cfg.min_radius_ratio))
        max_radius = min(cfg.max_radius_cap, int(min_dim * cfg.max_radius_ratio))
        return min_radius, max_radius

    def magnitude_spectrum(self, gray: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """Low-passed, centered, normalized log-magnitude spectrum (8-bit)."""
        cfg = self.config
        rows, cols = gray.shape
        m = cv2.getOptimalDFTSize(rows)
        n = cv2.getOptimalDFTSize(cols)
        padded = cv2.copyMakeBorder(
            gray, 0, m - rows, 0, n - cols, cv2.BORDER_CONSTANT, value=0
        )

        dft = cv2.dft(np.float32(padded), flags=cv2.DFT_COMPLEX_OUTPUT)
        magnitude = cv2.magnitude(dft[:, :, 0], dft[:, :, 1])
        magnitude = np.log(magnitude + 1.0)

        # Crop to even size and swap quadrants so DC sits in the center
        magnitude = magnitude[: magnitude.shape[0] & -2, : magnitude.shape[1] & -2]
        magnitude = np.fft.fftshift(magnitude)
        magnitude = cv2.normalize(magnitude, None, 0.0, 1.0, cv2.NORM_MINMAX)

        cy, cx = magnitude.shape[0] // 2, magnitude.shape[1] // 2
        lowpass = np.zeros(magnitude.shape, dtype=np.float32)
        cv2.circle(lowpass, (cx, cy), int(min(cx, cy) / cfg.lowpass_divisor), 1.0, -1)
        magnitude = magnitude * lowpass

        return (magnitude * 255).astype(np.uint8)

    def detect(
        self, frame: NDArray[np.uint8], context: Optional[DetectionContext] = None
    ) -> BallCandidate:
        if not DetectionUtils.is_valid_frame(frame):
            return BallCandidate.not_detected()

        cfg = self.config
        context = context or DetectionContext()
        gray = cv2.GaussianBlur(
            DetectionUtils.to_gray(frame), (cfg.blur_kernel, cfg.blur_kernel), 0
        )
        spectrum = self.magnitude_spectrum(gray)
        min_radius, max_radius = self.radius_bounds(gray.shape)
        if max_radius <= min_radius:
            return BallCandidate.not_detected()

        circles = DetectionUtils.find_circles(
            spectrum,
            min_radius=min_radius,
            max_radius=max_radius,
            param1=cfg.param1,
            param2=cfg.param2,
            min_dist=spectrum.shape[0] / cfg.min_dist_divisor,
        )

        best_score = 0.0
        best: Optional[BallCandidate] = None
        for circle in circles:
            x, y = circle.center
            if not (0 <= x < gray.shape[1] and 0 <= y < gray.shape[0]):
                continue
            roi = DetectionUtils.circle_roi(circle.center, circle.radius, gray.shape)
            if roi is None:
                continue

            score = self.score_candidate(gray, roi, circle.radius, min_radius, max_radius)
            if score is None or score <= best_score:
                continue
            if not self._is_consistent(circle.center, context.recent_positions):
                logger.debug(f"Frequency candidate at {circle.center} inconsistent")
                continue

            best_score = score
            best = BallCandidate.detected(circle.center, circle.radius, score, self.method)

        return best or BallCandidate.not_detected()

    def score_candidate(
        self,
        gray: NDArray[np.uint8],
        roi: tuple[int, int, int, int],
        radius: float,
        min_radius: int,
        max_radius: int,
    ) -> Optional[float]:
        """Weighted contrast/size/circularity score, or None if rejected."""
        cfg = self.config
        x, y, w, h = roi
        patch = gray[y : y + h, x : x + w]
        _, std_dev = cv2.meanStdDev(patch)
        std_dev = float(std_dev[0][0])
        circularity = _patch_circularity(gray, roi)

        contrast_score = min(1.0, std_dev / cfg.contrast_scale)
        half_range = (max_radius - min_radius) / 2.0
        size_score = 1.0 - abs(radius - (min_radius + max_radius) / 2.0) / half_range
        score = (
            contrast_score * cfg.contrast_weight
            + size_score * cfg.size_weight
            + circularity * cfg.circularity_weight
        )

        if (
            std_dev > cfg.min_contrast
            and circularity > cfg.min_circularity
            and score > cfg.min_score
        ):
            return min(1.0, score)
        return None

    def _is_consistent(self, position: Point, recent: Sequence[Point]) -> bool:
        if not recent:
            return True
        average = sum(
            DetectionUtils.calculate_distance(position, p) for p in recent
        ) / len(recent)
        return average < self.config.max_history_distance


# =============================================================================
# Motion
# =============================================================================


@dataclass
class MotionDetectionConfig:
    history: int = 500
    var_threshold: float = 16.0
    detect_shadows: bool = True
    foreground_threshold: int = 200
    morph_kernel: int = 7
    min_area: float = 150
    max_area: float = 5000
    region_min_area: float = 100
    region_max_area: float = 10000
    region_confidence_area: float = 1000.0

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "MotionDetectionConfig":
        subtractor = config.get("background_subtractor", {})
        regions = config.get("regions", {})
        return cls(
            history=subtractor.get("history", 500),
            var_threshold=subtractor.get("var_threshold", 16.0),
            detect_shadows=subtractor.get("detect_shadows", True),
            foreground_threshold=config.get("foreground_threshold", 200),
            morph_kernel=config.get("morph_kernel", 7),
            min_area=config.get("min_area", 150),
            max_area=config.get("max_area", 5000),
            region_min_area=regions.get("min_area", 100),
            region_max_area=regions.get("max_area", 10000),
            region_confidence_area=regions.get("confidence_area", 1000.0),
        )


class MotionDetector(BallDetectionStrategy):
    """Largest moving blob from MOG2 background subtraction.

    This is the only stateful strategy: the subtractor learns from every
    frame it sees and is recreated when the frame size changes or on reset.
    """

    method = DetectionMethod.MOTION

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        self.config = MotionDetectionConfig.from_config(config or {})
        self._subtractor = None
        self._frame_shape: Optional[tuple[int, ...]] = None

    def reset(self) -> None:
        self._subtractor = None
        self._frame_shape = None

    def _foreground_mask(self, frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
        cfg = self.config
        if self._subtractor is None or self._frame_shape != frame.shape:
            if self._frame_shape is not None:
                logger.debug(
                    f"Frame size changed {self._frame_shape} -> {frame.shape}, "
                    "resetting background model"
                )
            self._subtractor = cv2.createBackgroundSubtractorMOG2(
                history=cfg.history,
                varThreshold=cfg.var_threshold,
                detectShadows=cfg.detect_shadows,
            )
            self._frame_shape = frame.shape

        mask = self._subtractor.apply(frame)
        # Drop MOG2 shadow pixels (value 127)
        _, mask = cv2.threshold(mask, cfg.foreground_threshold, 255, cv2.THRESH_BINARY)
        return DetectionUtils.apply_morphological_operations(
            mask, ("open", "close"), cfg.morph_kernel
        )

    def detect(
        self, frame: NDArray[np.uint8], context: Optional[DetectionContext] = None
    ) -> BallCandidate:
        if not DetectionUtils.is_valid_frame(frame):
            return BallCandidate.not_detected()

        cfg = self.config
        mask = self._foreground_mask(frame)

        best_area = 0.0
        best = None
        for contour in DetectionUtils.find_external_contours(mask):
            area = cv2.contourArea(contour)
            if cfg.min_area < area < cfg.max_area and area > best_area:
                best_area = area
                best = contour

        if best is None:
            return BallCandidate.not_detected()

        (x, y), radius = cv2.minEnclosingCircle(best)
        circularity = DetectionUtils.contour_circularity(best)
        return BallCandidate.detected((x, y), radius, circularity, self.method)

    def detect_regions(self, frame: NDArray[np.uint8]) -> list[MotionRegion]:
        """All moving regions, largest first, with area-based confidence."""
        if not DetectionUtils.is_valid_frame(frame):
            return []

        cfg = self.config
        mask = self._foreground_mask(frame)
        regions = []
        for contour in DetectionUtils.find_external_contours(mask):
            area = cv2.contourArea(contour)
            if not cfg.region_min_area < area < cfg.region_max_area:
                continue
            x, y, w, h = cv2.boundingRect(contour)
            regions.append(
                MotionRegion(
                    center=(x + w // 2, y + h // 2),
                    width=w,
                    height=h,
                    area=float(area),
                    confidence=min(1.0, area / cfg.region_confidence_area),
                )
            )
        regions.sort(key=lambda region: region.area, reverse=True)
        return regions


def create_default_strategies(
    config: Optional[dict[str, Any]] = None,
) -> dict[DetectionMethod, BallDetectionStrategy]:
    """Build the classical strategies from a ``vision.ball_detection`` section."""
    config = config or {}
    return {
        DetectionMethod.SHAPE: ShapeDetector(config.get("shape", {})),
        DetectionMethod.BALL_SPECIFIC: BallSpecificDetector(
            config.get("ball_specific", {})
        ),
        DetectionMethod.COLOR: ColorDetector(config.get("color", {})),
        DetectionMethod.FREQUENCY: FrequencyDetector(config.get("frequency", {})),
        DetectionMethod.MOTION: MotionDetector(config.get("motion", {})),
    }
