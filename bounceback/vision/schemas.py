"""Frame Result Message Models.

Pydantic models describing the per-frame record emitted by a detection
session, as consumed by presentation and logging collaborators. Field
names use the camelCase keys produced by ``FrameResult.to_dict()``.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import DetectionMethod, FrameResult, ProcessingMode


class _FrameRecordModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# Scene Objects
# =============================================================================


class TargetModel(_FrameRecordModel):
    """Scoring target on the goal."""

    center_x: int = Field(..., alias="centerX", description="Center x in pixels")
    center_y: int = Field(..., alias="centerY", description="Center y in pixels")
    radius: float = Field(..., ge=0.0, description="Radius in pixels")
    target_number: int = Field(
        ...,
        alias="targetNumber",
        ge=0,
        description="Target number, 0 when unnumbered",
    )
    is_circular: bool = Field(default=True, alias="isCircular")
    quadrant: int = Field(
        default=0, ge=0, le=4, description="Goal quadrant, 0 when unassigned"
    )
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class BoundaryRegionModel(_FrameRecordModel):
    """Goal boundary rectangle; all zeros when no boundary is known."""

    x: int = Field(default=0, ge=0)
    y: int = Field(default=0, ge=0)
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)


class BallStateModel(_FrameRecordModel):
    """Reported ball for the frame."""

    x: int
    y: int
    radius: float = Field(..., ge=0.0)
    is_detected: bool = Field(..., alias="isDetected")
    confidence: float = Field(..., ge=0.0, le=1.0)
    method: DetectionMethod = Field(default=DetectionMethod.NONE)

    @model_validator(mode="after")
    def check_sentinel(self) -> "BallStateModel":
        """An undetected ball must carry the (-1, -1) sentinel position."""
        if not self.is_detected and (self.x, self.y) != (-1, -1):
            raise ValueError("Undetected ball must use position (-1, -1)")
        if not self.is_detected and self.confidence != 0.0:
            raise ValueError("Undetected ball must have zero confidence")
        return self


class FrameStatisticsModel(_FrameRecordModel):
    """Per-frame processing metadata."""

    frame_number: int = Field(..., alias="frameNumber", ge=0)
    timestamp: float = Field(..., ge=0.0)
    processing_time_ms: float = Field(..., alias="processingTimeMs", ge=0.0)
    average_brightness: float = Field(
        ..., alias="averageBrightness", ge=0.0, le=255.0
    )
    frame_width: int = Field(..., alias="frameWidth", ge=0)
    frame_height: int = Field(..., alias="frameHeight", ge=0)
    processing_mode: ProcessingMode = Field(..., alias="processingMode")
    detection_method: DetectionMethod = Field(..., alias="detectionMethod")


# =============================================================================
# Frame Result
# =============================================================================


class FrameResultModel(_FrameRecordModel):
    """Complete per-frame record."""

    targets: list[TargetModel] = Field(default_factory=list)
    boundary_region: BoundaryRegionModel = Field(
        default_factory=BoundaryRegionModel, alias="boundaryRegion"
    )
    ball: BallStateModel
    impact: bool = Field(default=False)
    impact_target_number: Optional[int] = Field(
        default=None, alias="impactTargetNumber", ge=0
    )
    statistics: Optional[FrameStatisticsModel] = None

    @model_validator(mode="after")
    def check_impact(self) -> "FrameResultModel":
        if self.impact and not self.ball.is_detected:
            raise ValueError("Impact reported without a detected ball")
        if self.impact != (self.impact_target_number is not None):
            raise ValueError("impactTargetNumber must be set exactly when impact")
        return self


def validate_frame_result(result: FrameResult) -> FrameResultModel:
    """Validate a frame result record; raises pydantic.ValidationError."""
    return FrameResultModel.model_validate(result.to_dict())


def frame_result_payload(result: FrameResult) -> dict[str, Any]:
    """Validated camelCase payload for a frame result."""
    return validate_frame_result(result).model_dump(by_alias=True)
