"""Ball-to-target impact decisions."""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .detection.utils import DetectionUtils
from .models import BallCandidate, BoundaryRegion, ImpactEvent, Target

logger = logging.getLogger(__name__)


@dataclass
class ImpactConfig:
    tolerance_px: float = 10.0
    latch_cooldown_frames: int = 15
    latch_rearm_frames: int = 3

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ImpactConfig":
        latch = config.get("latch", {})
        return cls(
            tolerance_px=float(config.get("tolerance_px", 10.0)),
            latch_cooldown_frames=int(latch.get("cooldown_frames", 15)),
            latch_rearm_frames=int(latch.get("rearm_frames", 3)),
        )


class ImpactDecider:
    """Stateless check of whether the ball is on a target.

    Circular targets use center distance against radius + tolerance.
    Non-circular targets use their bounding box grown by the tolerance.
    The nearest qualifying target is reported.
    """

    def __init__(self, tolerance_px: float = 10.0) -> None:
        self.tolerance_px = tolerance_px

    def decide(
        self,
        ball: BallCandidate,
        targets: Sequence[Target],
        boundary: Optional[BoundaryRegion] = None,
    ) -> ImpactEvent:
        if not ball.is_detected or not targets:
            return ImpactEvent.none()

        if boundary is not None and not boundary.is_empty:
            if not boundary.contains(ball.position):
                return ImpactEvent.none()

        nearest: Optional[tuple[float, Target]] = None
        for target in targets:
            distance = DetectionUtils.calculate_distance(ball.position, target.center)
            if not self._hits(ball, target, distance):
                continue
            if nearest is None or distance < nearest[0]:
                nearest = (distance, target)

        if nearest is None:
            return ImpactEvent.none()

        distance, target = nearest
        return ImpactEvent(
            did_occur=True, target_number=target.target_number, distance=distance
        )

    def _hits(self, ball: BallCandidate, target: Target, distance: float) -> bool:
        if target.is_circular:
            return distance <= target.radius + self.tolerance_px
        x, y, w, h = target.bounding_box
        t = self.tolerance_px
        bx, by = ball.position
        return x - t <= bx <= x + w + t and y - t <= by <= y + h + t


class ImpactLatch:
    """One-shot debounce around the decider.

    A rising edge is reported once. The latch re-arms after the ball has
    been off every target for ``rearm_frames`` frames, or once
    ``cooldown_frames`` have passed since the last report.
    """

    def __init__(self, cooldown_frames: int = 15, rearm_frames: int = 3) -> None:
        self.cooldown_frames = cooldown_frames
        self.rearm_frames = rearm_frames
        self._latched = False
        self._last_report_frame: Optional[int] = None
        self._frames_clear = 0
        self.reported_count = 0

    @property
    def is_latched(self) -> bool:
        return self._latched

    def update(self, event: ImpactEvent, frame_index: int) -> ImpactEvent:
        """Pass through the first impact of a run, suppress the rest."""
        if self._latched and self._last_report_frame is not None:
            if frame_index - self._last_report_frame >= self.cooldown_frames:
                self._latched = False

        if not event.did_occur:
            self._frames_clear += 1
            if self._frames_clear >= self.rearm_frames:
                self._latched = False
            return event

        self._frames_clear = 0
        if self._latched:
            return ImpactEvent.none()

        self._latched = True
        self._last_report_frame = frame_index
        self.reported_count += 1
        logger.info(
            f"Impact on target {event.target_number} "
            f"(distance {event.distance:.1f}px)"
        )
        return event

    def reset(self) -> None:
        self._latched = False
        self._last_report_frame = None
        self._frames_clear = 0
