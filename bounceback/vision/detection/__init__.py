"""Detection module for the BounceBack vision system.

Provides detection for:
- Scoring targets and the goal boundary (Hough circles + color contours)
- The ball (an ensemble of classical OpenCV strategies plus an optional
  pretrained model), fused by the unified selector
"""

from .balls import (
    BallDetectionStrategy,
    BallSpecificDetector,
    ColorDetector,
    DetectionContext,
    FrequencyDetector,
    MotionDetector,
    ShapeDetector,
    create_default_strategies,
)
from .model_adapter import (
    BallModel,
    ExternalModelDetector,
    ModelDetection,
    UltralyticsBallModel,
    parse_model_output,
)
from .selector import SelectorEntry, UnifiedSelector
from .targets import TargetDetector
from .utils import DetectionUtils

__all__ = [
    # Ball strategies
    "BallDetectionStrategy",
    "BallSpecificDetector",
    "ColorDetector",
    "DetectionContext",
    "FrequencyDetector",
    "MotionDetector",
    "ShapeDetector",
    "create_default_strategies",
    # Pretrained model
    "BallModel",
    "ExternalModelDetector",
    "ModelDetection",
    "UltralyticsBallModel",
    "parse_model_output",
    # Fusion
    "SelectorEntry",
    "UnifiedSelector",
    # Targets
    "TargetDetector",
    "DetectionUtils",
]
