"""Lighting calibration and color profiles.

Main Classes:
    LightingCalibrator: Classifies scene brightness and picks a color profile
    ColorProfile: HSV thresholds for tape, targets and ball colors
    ColorThresholds: Single HSV range with hue wrap-around support
"""

from .color import (
    DEFAULT_PROFILES,
    CalibrationConfig,
    CalibrationResult,
    ColorProfile,
    ColorThresholds,
    LightingCalibrator,
)

__all__ = [
    "DEFAULT_PROFILES",
    "CalibrationConfig",
    "CalibrationResult",
    "ColorProfile",
    "ColorThresholds",
    "LightingCalibrator",
]
