"""Lighting-adaptive color calibration."""

import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from ..models import LightingCondition, ProcessingMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColorThresholds:
    """HSV color thresholds (OpenCV ranges: hue 0-179, sat/value 0-255)."""

    hue_min: int
    hue_max: int
    saturation_min: int
    saturation_max: int
    value_min: int
    value_max: int

    @property
    def wraps(self) -> bool:
        return self.hue_min > self.hue_max

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, int]) -> "ColorThresholds":
        return cls(**{k: int(v) for k, v in data.items()})

    def apply_mask(self, hsv_image: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """Binary mask of pixels inside the range."""
        # Handle hue wraparound (red color)
        if self.wraps:
            mask1 = cv2.inRange(
                hsv_image,
                (self.hue_min, self.saturation_min, self.value_min),
                (179, self.saturation_max, self.value_max),
            )
            mask2 = cv2.inRange(
                hsv_image,
                (0, self.saturation_min, self.value_min),
                (self.hue_max, self.saturation_max, self.value_max),
            )
            return cv2.bitwise_or(mask1, mask2)
        return cv2.inRange(
            hsv_image,
            (self.hue_min, self.saturation_min, self.value_min),
            (self.hue_max, self.saturation_max, self.value_max),
        )


@dataclass(frozen=True)
class ColorProfile:
    """Color ranges used by the target, boundary and color-based ball detectors.

    Profiles are immutable; recalibration swaps in a different instance.
    """

    name: str
    condition: LightingCondition
    boundary_tape: ColorThresholds
    target_a: ColorThresholds
    target_b: ColorThresholds
    ball_white: ColorThresholds
    ball_accent: ColorThresholds
    bright_match_factor: float = 0.85

    @property
    def target_colors(self) -> tuple[ColorThresholds, ColorThresholds]:
        return (self.target_a, self.target_b)

    def match_threshold(self, base_percentage: float) -> float:
        """Color-membership percentage required, relaxed in bright light."""
        if self.condition == LightingCondition.BRIGHT:
            return base_percentage * self.bright_match_factor
        return base_percentage

    def with_overrides(self, overrides: dict[str, dict[str, int]]) -> "ColorProfile":
        """Copy with some color ranges replaced, e.g. from configuration."""
        changes = {}
        for color_name, values in overrides.items():
            if color_name not in _PROFILE_COLORS:
                logger.warning(f"Ignoring unknown profile color '{color_name}'")
                continue
            try:
                current = getattr(self, color_name).to_dict()
                current.update(values)
                changes[color_name] = ColorThresholds.from_dict(current)
            except (TypeError, ValueError) as e:
                logger.warning(f"Invalid override for '{color_name}': {e}")
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "condition": self.condition.value,
        }
        for color_name in _PROFILE_COLORS:
            data[color_name] = getattr(self, color_name).to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ColorProfile":
        return cls(
            name=data["name"],
            condition=LightingCondition(data["condition"]),
            **{
                color_name: ColorThresholds.from_dict(data[color_name])
                for color_name in _PROFILE_COLORS
            },
        )


_PROFILE_COLORS = ("boundary_tape", "target_a", "target_b", "ball_white", "ball_accent")

_BALL_WHITE = ColorThresholds(0, 180, 0, 30, 200, 255)
_BALL_ORANGE = ColorThresholds(10, 20, 100, 255, 100, 255)

DEFAULT_PROFILES: dict[LightingCondition, ColorProfile] = {
    LightingCondition.BRIGHT: ColorProfile(
        name="bright",
        condition=LightingCondition.BRIGHT,
        boundary_tape=ColorThresholds(140, 170, 60, 255, 80, 255),
        target_a=ColorThresholds(10, 45, 50, 255, 80, 255),
        target_b=ColorThresholds(150, 15, 70, 255, 70, 255),
        ball_white=_BALL_WHITE,
        ball_accent=_BALL_ORANGE,
    ),
    LightingCondition.MODERATE: ColorProfile(
        name="moderate",
        condition=LightingCondition.MODERATE,
        boundary_tape=ColorThresholds(140, 170, 80, 255, 100, 255),
        target_a=ColorThresholds(15, 40, 70, 255, 100, 255),
        target_b=ColorThresholds(155, 12, 80, 255, 80, 255),
        ball_white=_BALL_WHITE,
        ball_accent=_BALL_ORANGE,
    ),
    LightingCondition.LOW: ColorProfile(
        name="low",
        condition=LightingCondition.LOW,
        boundary_tape=ColorThresholds(140, 170, 100, 255, 100, 255),
        target_a=ColorThresholds(20, 35, 100, 255, 100, 255),
        target_b=ColorThresholds(160, 10, 100, 255, 100, 255),
        ball_white=_BALL_WHITE,
        ball_accent=_BALL_ORANGE,
    ),
}

_MODE_FOR_CONDITION = {
    LightingCondition.BRIGHT: ProcessingMode.FAST,
    LightingCondition.MODERATE: ProcessingMode.BALANCED,
    LightingCondition.LOW: ProcessingMode.ACCURATE,
}


@dataclass
class CalibrationConfig:
    """Brightness buckets and per-condition profile overrides."""

    bright_threshold: float = 150.0
    low_threshold: float = 80.0
    bright_match_factor: float = 0.85
    profile_overrides: dict[str, dict[str, dict[str, int]]] = field(
        default_factory=dict
    )

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "CalibrationConfig":
        return cls(
            bright_threshold=float(config.get("bright_threshold", 150.0)),
            low_threshold=float(config.get("low_threshold", 80.0)),
            bright_match_factor=float(config.get("bright_match_factor", 0.85)),
            profile_overrides=dict(config.get("profiles", {})),
        )


@dataclass(frozen=True)
class CalibrationResult:
    """Outcome of one calibration pass."""

    brightness: float
    condition: LightingCondition
    mode: ProcessingMode
    profile: ColorProfile
    timestamp: float = field(default_factory=time.time)


class LightingCalibrator:
    """Pick a predefined color profile and processing mode from scene brightness.

    Brightness is the mean luma of the frame. Above ``bright_threshold`` the
    scene is bright (fast mode), below ``low_threshold`` it is dim (accurate
    mode), otherwise moderate (balanced mode).
    """

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        self.config = CalibrationConfig.from_config(config or {})
        self._profiles = self._build_profiles()
        self.last_result: CalibrationResult = CalibrationResult(
            brightness=0.0,
            condition=LightingCondition.MODERATE,
            mode=ProcessingMode.BALANCED,
            profile=self._profiles[LightingCondition.MODERATE],
            timestamp=0.0,
        )
        self.calibration_count = 0

    def _build_profiles(self) -> dict[LightingCondition, ColorProfile]:
        profiles = {}
        for condition, profile in DEFAULT_PROFILES.items():
            profile = replace(
                profile, bright_match_factor=self.config.bright_match_factor
            )
            overrides = self.config.profile_overrides.get(condition.value)
            if overrides:
                profile = profile.with_overrides(overrides)
            profiles[condition] = profile
        return profiles

    @staticmethod
    def estimate_brightness(frame: NDArray[np.uint8]) -> float:
        """Mean luma of a BGR (or grayscale) frame."""
        if frame is None or frame.size == 0:
            return 0.0
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
        return float(cv2.mean(gray)[0])

    def classify(self, brightness: float) -> LightingCondition:
        if brightness > self.config.bright_threshold:
            return LightingCondition.BRIGHT
        if brightness < self.config.low_threshold:
            return LightingCondition.LOW
        return LightingCondition.MODERATE

    def profile_for(self, condition: LightingCondition) -> ColorProfile:
        return self._profiles[condition]

    @staticmethod
    def mode_for(condition: LightingCondition) -> ProcessingMode:
        return _MODE_FOR_CONDITION[condition]

    def calibrate(self, frame: NDArray[np.uint8]) -> CalibrationResult:
        """Classify the frame's lighting and return the matching profile.

        An empty frame leaves the previous result in place.
        """
        if frame is None or frame.size == 0:
            return self.last_result

        brightness = self.estimate_brightness(frame)
        condition = self.classify(brightness)
        previous = self.last_result.condition
        result = CalibrationResult(
            brightness=brightness,
            condition=condition,
            mode=self.mode_for(condition),
            profile=self._profiles[condition],
        )
        self.last_result = result
        self.calibration_count += 1

        if condition != previous:
            logger.info(
                f"Lighting changed to {condition.value} (brightness {brightness:.1f}), "
                f"mode {result.mode.value}"
            )
        else:
            logger.debug(f"Lighting calibrated: brightness {brightness:.1f}")
        return result
