"""Vision module data models.

Value records passed between the pipeline stages:
- Targets and the goal boundary region
- Ball candidates produced by the detector ensemble
- Tracker state owned by a detection session
- Impact events and the per-frame result record
"""

import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

Point = tuple[int, int]
BoundingBox = tuple[int, int, int, int]  # x, y, width, height

# =============================================================================
# Enumerations
# =============================================================================


class DetectionMethod(Enum):
    """Ball detection strategies."""

    SHAPE = "shape"
    BALL_SPECIFIC = "ball_specific"
    COLOR = "color"
    FREQUENCY = "frequency"
    MOTION = "motion"
    EXTERNAL_MODEL = "external_model"
    NONE = "none"


class ProcessingMode(Enum):
    """Processing effort hint chosen by the lighting calibrator."""

    FAST = "fast"
    BALANCED = "balanced"
    ACCURATE = "accurate"


class LightingCondition(Enum):
    """Scene brightness bucket."""

    BRIGHT = "bright"
    MODERATE = "moderate"
    LOW = "low"


class TrackState(Enum):
    """Temporal tracker states."""

    IDLE = "idle"
    TRACKING = "tracking"
    LOST = "lost"


def clamp_confidence(value: float) -> float:
    """Clamp a confidence value into [0, 1]; NaN becomes 0."""
    value = float(value)
    if value != value:
        return 0.0
    return min(1.0, max(0.0, value))


# =============================================================================
# Scene Objects
# =============================================================================


@dataclass(frozen=True)
class BoundaryRegion:
    """Axis-aligned rectangle delimiting the goal area, in frame pixels."""

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def empty(cls) -> "BoundaryRegion":
        return cls(0, 0, 0, 0)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def midpoint(self) -> Point:
        """Midpoint lines used for quadrant assignment."""
        return (self.x + self.width // 2, self.y + self.height // 2)

    def contains(self, point: tuple[float, float]) -> bool:
        """Inclusive containment check."""
        px, py = point
        return (
            self.x <= px <= self.x + self.width
            and self.y <= py <= self.y + self.height
        )

    def clamp_to(self, frame_shape: tuple[int, ...]) -> Optional["BoundaryRegion"]:
        """Clip the rectangle to the frame; None if nothing remains."""
        frame_h, frame_w = frame_shape[:2]
        x1 = max(0, min(int(self.x), frame_w))
        y1 = max(0, min(int(self.y), frame_h))
        x2 = max(0, min(int(self.x + self.width), frame_w))
        y2 = max(0, min(int(self.y + self.height), frame_h))
        if x2 <= x1 or y2 <= y1:
            return None
        return BoundaryRegion(x1, y1, x2 - x1, y2 - y1)

    def to_dict(self) -> dict[str, int]:
        return {
            "x": int(self.x),
            "y": int(self.y),
            "width": int(self.width),
            "height": int(self.height),
        }


@dataclass(frozen=True)
class Target:
    """Scoring target found on the goal.

    ``radius`` is meaningful for circular targets. Non-circular targets are
    described by ``bounding_box`` and ``radius`` holds half its larger side.
    """

    center: Point
    radius: float
    bounding_box: BoundingBox
    is_circular: bool = True
    target_number: int = 0
    quadrant: int = 0  # 0 = unassigned
    confidence: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))
        if self.quadrant not in (0, 1, 2, 3, 4):
            raise ValueError(f"Invalid quadrant: {self.quadrant}")

    def with_quadrant(self, quadrant: int) -> "Target":
        return replace(self, quadrant=quadrant)

    def with_number(self, target_number: int) -> "Target":
        return replace(self, target_number=target_number)

    def translated(self, dx: int, dy: int) -> "Target":
        x, y, w, h = self.bounding_box
        return replace(
            self,
            center=(self.center[0] + dx, self.center[1] + dy),
            bounding_box=(x + dx, y + dy, w, h),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "centerX": int(self.center[0]),
            "centerY": int(self.center[1]),
            "radius": float(self.radius),
            "targetNumber": int(self.target_number),
            "isCircular": bool(self.is_circular),
            "quadrant": int(self.quadrant),
            "confidence": float(self.confidence),
        }


@dataclass(frozen=True)
class BallCandidate:
    """One detector's ball proposal for one frame.

    A candidate that is not detected is always the sentinel: position
    (-1, -1), radius 0, confidence 0 and method ``none``.
    """

    position: Point = (-1, -1)
    radius: float = 0.0
    confidence: float = 0.0
    method: DetectionMethod = DetectionMethod.NONE
    is_detected: bool = False

    def __post_init__(self) -> None:
        if not self.is_detected:
            object.__setattr__(self, "position", (-1, -1))
            object.__setattr__(self, "radius", 0.0)
            object.__setattr__(self, "confidence", 0.0)
            object.__setattr__(self, "method", DetectionMethod.NONE)
            return
        object.__setattr__(
            self, "position", (int(round(self.position[0])), int(round(self.position[1])))
        )
        object.__setattr__(self, "radius", max(0.0, float(self.radius)))
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @classmethod
    def not_detected(cls) -> "BallCandidate":
        return cls()

    @classmethod
    def detected(
        cls,
        position: tuple[float, float],
        radius: float,
        confidence: float,
        method: DetectionMethod,
    ) -> "BallCandidate":
        return cls(
            position=(int(round(position[0])), int(round(position[1]))),
            radius=radius,
            confidence=confidence,
            method=method,
            is_detected=True,
        )

    def translated(self, dx: int, dy: int) -> "BallCandidate":
        """Shift a detected candidate, e.g. from crop space back to frame space."""
        if not self.is_detected:
            return self
        return replace(self, position=(self.position[0] + dx, self.position[1] + dy))

    def with_confidence(self, confidence: float) -> "BallCandidate":
        if not self.is_detected:
            return self
        return replace(self, confidence=confidence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "x": int(self.position[0]),
            "y": int(self.position[1]),
            "radius": float(self.radius),
            "isDetected": bool(self.is_detected),
            "confidence": float(self.confidence),
            "method": self.method.value,
        }


@dataclass(frozen=True)
class MotionRegion:
    """Moving region reported by background subtraction."""

    center: Point
    width: int
    height: int
    area: float
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "centerX": int(self.center[0]),
            "centerY": int(self.center[1]),
            "width": int(self.width),
            "height": int(self.height),
            "area": float(self.area),
            "confidence": float(self.confidence),
        }


@dataclass(frozen=True)
class ImpactEvent:
    """Result of an impact decision. Derived per frame, never stored."""

    did_occur: bool = False
    target_number: Optional[int] = None
    distance: Optional[float] = None

    @classmethod
    def none(cls) -> "ImpactEvent":
        return cls()


# =============================================================================
# Tracking State
# =============================================================================


@dataclass
class TrackerState:
    """Cross-frame ball tracking state owned by one detection session."""

    history_size: int = 5
    state: TrackState = TrackState.IDLE
    last_accepted: Optional[BallCandidate] = None
    last_accepted_position: Optional[Point] = None
    velocity: tuple[float, float] = (0.0, 0.0)
    consecutive_accepted_count: int = 0
    frames_since_last_acceptance: int = 0
    consecutive_misses: int = 0
    last_accepted_frame_index: Optional[int] = None
    position_history: deque = field(init=False)

    def __post_init__(self) -> None:
        self.position_history = deque(maxlen=self.history_size)

    def clear_history(self) -> None:
        self.position_history.clear()

    def reset(self) -> None:
        """Clear everything, returning to a fresh idle state."""
        self.state = TrackState.IDLE
        self.last_accepted = None
        self.last_accepted_position = None
        self.velocity = (0.0, 0.0)
        self.consecutive_accepted_count = 0
        self.frames_since_last_acceptance = 0
        self.consecutive_misses = 0
        self.last_accepted_frame_index = None
        self.position_history.clear()


# =============================================================================
# Frame Results
# =============================================================================


@dataclass
class FrameStatistics:
    """Per-frame processing metadata."""

    frame_number: int = 0
    timestamp: float = field(default_factory=time.time)
    processing_time_ms: float = 0.0
    average_brightness: float = 0.0
    frame_width: int = 0
    frame_height: int = 0
    processing_mode: ProcessingMode = ProcessingMode.BALANCED
    detection_method: DetectionMethod = DetectionMethod.NONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "frameNumber": self.frame_number,
            "timestamp": self.timestamp,
            "processingTimeMs": self.processing_time_ms,
            "averageBrightness": self.average_brightness,
            "frameWidth": self.frame_width,
            "frameHeight": self.frame_height,
            "processingMode": self.processing_mode.value,
            "detectionMethod": self.detection_method.value,
        }


@dataclass
class FrameResult:
    """Structured per-frame record consumed by presentation and logging."""

    targets: list[Target] = field(default_factory=list)
    boundary_region: Optional[BoundaryRegion] = None
    ball: BallCandidate = field(default_factory=BallCandidate.not_detected)
    impact: ImpactEvent = field(default_factory=ImpactEvent.none)
    statistics: Optional[FrameStatistics] = None

    @property
    def impact_target_number(self) -> Optional[int]:
        return self.impact.target_number if self.impact.did_occur else None

    def to_dict(self) -> dict[str, Any]:
        boundary = self.boundary_region or BoundaryRegion.empty()
        result: dict[str, Any] = {
            "targets": [target.to_dict() for target in self.targets],
            "boundaryRegion": boundary.to_dict(),
            "ball": self.ball.to_dict(),
            "impact": bool(self.impact.did_occur),
            "impactTargetNumber": self.impact_target_number,
        }
        if self.statistics is not None:
            result["statistics"] = self.statistics.to_dict()
        return result
