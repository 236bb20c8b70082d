"""Common detection utilities."""

import math
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from ..calibration.color import ColorThresholds


@dataclass
class Circle:
    """Represents a detected circle."""

    center: tuple[int, int]
    radius: int

    @property
    def area(self) -> float:
        return math.pi * self.radius * self.radius


class DetectionUtils:
    """Common utilities for vision detection."""

    @staticmethod
    def is_valid_frame(frame: Optional[np.ndarray]) -> bool:
        """True for a non-empty 3-channel 8-bit image."""
        return (
            frame is not None
            and isinstance(frame, np.ndarray)
            and frame.size > 0
            and frame.ndim == 3
            and frame.shape[2] == 3
            and frame.shape[0] > 0
            and frame.shape[1] > 0
        )

    @staticmethod
    def to_gray(frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 2:
            return frame.copy()
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

    @staticmethod
    def find_circles(
        gray: np.ndarray,
        min_radius: int,
        max_radius: int,
        param1: float = 100,
        param2: float = 30,
        min_dist: Optional[float] = None,
        dp: float = 1.0,
    ) -> list[Circle]:
        """Hough circle search on an already-blurred 8-bit image.

        Circles keep OpenCV's accumulator order (strongest first).
        """
        if gray is None or gray.size == 0:
            return []

        if min_dist is None:
            min_dist = max(1.0, gray.shape[0] / 6.0)

        circles = cv2.HoughCircles(
            gray,
            cv2.HOUGH_GRADIENT,
            dp=dp,
            minDist=min_dist,
            param1=param1,
            param2=param2,
            minRadius=int(min_radius),
            maxRadius=int(max_radius),
        )

        detected = []
        if circles is not None:
            for x, y, r in np.round(circles[0, :]).astype("int"):
                if r <= 0:
                    continue
                detected.append(Circle(center=(int(x), int(y)), radius=int(r)))
        return detected

    @staticmethod
    def find_external_contours(mask: np.ndarray) -> list[np.ndarray]:
        if mask is None or mask.size == 0:
            return []
        contours, _ = cv2.findContours(
            mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE
        )
        return list(contours)

    @staticmethod
    def contour_circularity(contour: np.ndarray) -> float:
        """4*pi*area / perimeter^2, 1.0 for a perfect circle."""
        perimeter = cv2.arcLength(contour, True)
        if perimeter == 0:
            return 0.0
        area = cv2.contourArea(contour)
        return float(4 * math.pi * area / (perimeter * perimeter))

    @staticmethod
    def aspect_ratio(width: float, height: float) -> float:
        if height == 0:
            return 0.0
        return float(width) / float(height)

    @staticmethod
    def apply_morphological_operations(
        mask: np.ndarray,
        operations: tuple[str, ...] = ("close", "open"),
        kernel_size: int = 5,
        kernel_shape: int = cv2.MORPH_ELLIPSE,
    ) -> np.ndarray:
        """Apply a sequence of morphological operations to a binary mask."""
        if mask is None or mask.size == 0:
            return mask

        kernel = cv2.getStructuringElement(kernel_shape, (kernel_size, kernel_size))
        result = mask
        for operation in operations:
            op = operation.lower()
            if op == "close":
                result = cv2.morphologyEx(result, cv2.MORPH_CLOSE, kernel)
            elif op == "open":
                result = cv2.morphologyEx(result, cv2.MORPH_OPEN, kernel)
            elif op == "erode":
                result = cv2.erode(result, kernel)
            elif op == "dilate":
                result = cv2.dilate(result, kernel)
            else:
                raise ValueError(f"Unknown morphological operation: {operation}")
        return result

    @staticmethod
    def clamp_roi(
        x: int, y: int, width: int, height: int, frame_shape: tuple[int, ...]
    ) -> Optional[tuple[int, int, int, int]]:
        """Clip a rectangle to the frame; None if nothing remains."""
        frame_h, frame_w = frame_shape[:2]
        x1 = max(0, min(int(x), frame_w))
        y1 = max(0, min(int(y), frame_h))
        x2 = max(0, min(int(x + width), frame_w))
        y2 = max(0, min(int(y + height), frame_h))
        if x2 <= x1 or y2 <= y1:
            return None
        return (x1, y1, x2 - x1, y2 - y1)

    @staticmethod
    def circle_roi(
        center: tuple[int, int], radius: float, frame_shape: tuple[int, ...]
    ) -> Optional[tuple[int, int, int, int]]:
        """Bounding square of a circle, clipped to the frame."""
        r = int(math.ceil(radius))
        return DetectionUtils.clamp_roi(
            center[0] - r, center[1] - r, 2 * r, 2 * r, frame_shape
        )

    @staticmethod
    def color_match_percentage(
        hsv_image: np.ndarray,
        roi: Optional[tuple[int, int, int, int]],
        thresholds: ColorThresholds,
    ) -> float:
        """Percentage (0-100) of ROI pixels inside the color range."""
        if roi is None:
            return 0.0
        x, y, w, h = roi
        patch = hsv_image[y : y + h, x : x + w]
        if patch.size == 0:
            return 0.0
        mask = thresholds.apply_mask(patch)
        return 100.0 * cv2.countNonZero(mask) / float(mask.shape[0] * mask.shape[1])

    @staticmethod
    def enhance_contrast(
        frame: np.ndarray, clip_limit: float = 2.0, tile_grid_size: int = 8
    ) -> np.ndarray:
        """CLAHE on the L channel of the LAB image."""
        if frame is None or frame.size == 0:
            return frame
        lab = cv2.cvtColor(frame, cv2.COLOR_BGR2LAB)
        l_channel, a_channel, b_channel = cv2.split(lab)
        clahe = cv2.createCLAHE(
            clipLimit=clip_limit, tileGridSize=(tile_grid_size, tile_grid_size)
        )
        l_channel = clahe.apply(l_channel)
        return cv2.cvtColor(cv2.merge((l_channel, a_channel, b_channel)), cv2.COLOR_LAB2BGR)

    @staticmethod
    def calculate_distance(p1: tuple[float, float], p2: tuple[float, float]) -> float:
        """Calculate Euclidean distance between two points."""
        return math.hypot(p1[0] - p2[0], p1[1] - p2[1])
