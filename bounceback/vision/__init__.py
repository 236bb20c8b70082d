"""Vision Module - ball, target and impact detection for the BounceBack trainer.

A DetectionSession owns the per-session pipeline:
calibration (periodic) -> boundary/targets -> ball ensemble -> selector ->
temporal tracker -> impact decision. Each processed frame produces a
FrameResult record for presentation and logging collaborators.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray

from .calibration.color import CalibrationResult, ColorProfile, LightingCalibrator
from .detection.balls import DetectionContext, create_default_strategies
from .detection.model_adapter import (
    BallModel,
    ExternalModelDetector,
    UltralyticsBallModel,
)
from .detection.selector import UnifiedSelector
from .detection.targets import TargetDetector
from .detection.utils import DetectionUtils
from .impact import ImpactConfig, ImpactDecider, ImpactLatch
from .models import (
    BallCandidate,
    BoundaryRegion,
    DetectionMethod,
    FrameResult,
    FrameStatistics,
    ImpactEvent,
    MotionRegion,
    ProcessingMode,
    Target,
    TrackerState,
    TrackState,
)
from .tracking.tracker import (
    TemporalTracker,
    TrackDecision,
    TrackerConfig,
    TrackingResult,
)

logger = logging.getLogger(__name__)


def _get_config_value(key_path: str, default: Any) -> Any:
    """Get configuration value from the config system.

    Args:
        key_path: Dot-separated path (e.g., "vision.session.max_processing_fps")
        default: Default value if key not found
    """
    from ..config import config

    return config.get(key_path, default)


@dataclass
class VisionConfig:
    """Configuration for a detection session.

    Values passed explicitly win over values from the configuration file,
    which win over the built-in defaults.
    """

    max_processing_fps: float = 10.0
    calibration_interval_frames: int = 30
    initial_mode: ProcessingMode = ProcessingMode.BALANCED
    adaptive_mode: bool = True
    auto_detect_boundary: bool = True
    auto_lock_boundary: bool = True
    crop_to_boundary: bool = True
    model_path: Optional[str] = None
    model_device: str = "cpu"

    # Component sections, passed through to each component's from_config
    calibration: dict[str, Any] = field(default_factory=dict)
    targets: dict[str, Any] = field(default_factory=dict)
    ball_detection: dict[str, Any] = field(default_factory=dict)
    external_model: dict[str, Any] = field(default_factory=dict)
    selector: dict[str, Any] = field(default_factory=dict)
    tracker: dict[str, Any] = field(default_factory=dict)
    impact: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config_dict(cls, config_dict: dict[str, Any]) -> "VisionConfig":
        def value(key: str, path: str, default: Any) -> Any:
            return config_dict.get(key, _get_config_value(path, default))

        calibration = value("calibration", "vision.calibration", {})
        interval = config_dict.get(
            "calibration_interval_frames", calibration.get("interval_frames", 30)
        )

        mode = value("initial_mode", "vision.session.initial_mode", "balanced")
        try:
            initial_mode = ProcessingMode(mode) if isinstance(mode, str) else mode
        except ValueError:
            logger.warning(f"Unknown processing mode '{mode}', using balanced")
            initial_mode = ProcessingMode.BALANCED

        return cls(
            max_processing_fps=float(
                value("max_processing_fps", "vision.session.max_processing_fps", 10.0)
            ),
            calibration_interval_frames=max(1, int(interval)),
            initial_mode=initial_mode,
            adaptive_mode=bool(
                value("adaptive_mode", "vision.session.adaptive_mode", True)
            ),
            auto_detect_boundary=bool(
                value(
                    "auto_detect_boundary", "vision.session.auto_detect_boundary", True
                )
            ),
            auto_lock_boundary=bool(
                value("auto_lock_boundary", "vision.session.auto_lock_boundary", True)
            ),
            crop_to_boundary=bool(
                value("crop_to_boundary", "vision.session.crop_to_boundary", True)
            ),
            model_path=value("model_path", "vision.external_model.model_path", None),
            model_device=value("model_device", "vision.external_model.device", "cpu"),
            calibration=calibration,
            targets=value("targets", "vision.targets", {}),
            ball_detection=value("ball_detection", "vision.ball_detection", {}),
            external_model=value("external_model", "vision.external_model", {}),
            selector=value("selector", "vision.selector", {}),
            tracker=value("tracker", "vision.tracker", {}),
            impact=value("impact", "vision.impact", {}),
        )


@dataclass
class SessionStatistics:
    """Detection session statistics."""

    frames_processed: int = 0
    frames_dropped: int = 0
    invalid_frames: int = 0
    discarded_results: int = 0
    avg_processing_time: float = 0.0
    ball_frames_detected: int = 0
    ball_frames_missed: int = 0
    impacts_reported: int = 0
    last_error: Optional[str] = None


class VisionSessionError(Exception):
    """Raised for invalid session construction."""

    pass


class DetectionSession:
    """Single-stream detection pipeline with owned tracking state.

    At most one frame is processed at a time; frames arriving while another
    is in flight, or sooner than ``1 / max_processing_fps`` after the last
    processed frame, are dropped (``process_frame`` returns None).
    """

    def __init__(
        self,
        config: Optional[dict[str, Any]] = None,
        ball_model: Optional[BallModel] = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Session configuration (see VisionConfig)
            ball_model: Optional pretrained detector used as an extra strategy.
                When omitted and ``model_path`` is configured, an ultralytics
                model is created lazily.
        """
        self.config = VisionConfig.from_config_dict(config or {})
        tracker_config = TrackerConfig.from_config(self.config.tracker)
        if tracker_config.history_size < tracker_config.min_history:
            raise VisionSessionError(
                f"tracker history_size ({tracker_config.history_size}) must be at "
                f"least min_history ({tracker_config.min_history})"
            )
        if tracker_config.min_history < 2:
            raise VisionSessionError("tracker min_history must be at least 2")

        self.stats = SessionStatistics()

        # Components
        self.calibrator = LightingCalibrator(self.config.calibration)
        self.target_detector = TargetDetector(self.config.targets)
        self.strategies = create_default_strategies(self.config.ball_detection)
        if ball_model is None and self.config.model_path:
            ball_model = UltralyticsBallModel(
                self.config.model_path, device=self.config.model_device
            )
        self.external_detector: Optional[ExternalModelDetector] = None
        if ball_model is not None:
            self.external_detector = ExternalModelDetector(
                ball_model, self.config.external_model
            )
            self.strategies[DetectionMethod.EXTERNAL_MODEL] = self.external_detector

        self.tracker_state = TrackerState(history_size=tracker_config.history_size)
        self.tracker = TemporalTracker(self.config.tracker, self.tracker_state)
        impact_config = ImpactConfig.from_config(self.config.impact)
        self.decider = ImpactDecider(impact_config.tolerance_px)
        self.latch = ImpactLatch(
            impact_config.latch_cooldown_frames, impact_config.latch_rearm_frames
        )

        # Mode and profile
        self._mode = self.config.initial_mode
        self._mode_override: Optional[ProcessingMode] = None
        self._profile: ColorProfile = self.calibrator.last_result.profile
        self.selector = UnifiedSelector.build(
            self.strategies, self._mode, self.config.selector
        )

        # Threading and state management
        self._processing_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._generation = 0
        self._strategies_need_reset = False
        self._min_interval = (
            1.0 / self.config.max_processing_fps
            if self.config.max_processing_fps > 0
            else 0.0
        )
        self._last_process_time: Optional[float] = None

        # Scene state
        self._frame_counter = 0
        self._locked_boundary: Optional[BoundaryRegion] = None
        self._locked_targets: Optional[list[Target]] = None
        self._last_targets: list[Target] = []
        self._last_calibration: Optional[CalibrationResult] = None

        # Event callbacks
        self._callbacks: dict[str, list[Callable[..., Any]]] = {
            "frame_processed": [],
            "impact_detected": [],
            "error_occurred": [],
        }

        logger.info(
            f"Detection session initialized (mode {self._mode.value}, "
            f"strategies: {[m.value for m in self.selector.methods]})"
        )

    # =========================================================================
    # Frame processing
    # =========================================================================

    def process_frame(
        self,
        frame: NDArray[np.uint8],
        boundary_region: Optional[BoundaryRegion] = None,
    ) -> Optional[FrameResult]:
        """Run the full pipeline on one frame.

        Args:
            frame: BGR frame
            boundary_region: Optional goal rectangle for this frame, in frame
                pixels; it is clamped to the frame

        Returns:
            FrameResult, or None when the frame was dropped by the throttle

        Event callbacks run after the frame lock is released, so subscribers
        may call back into the session.
        """
        if not self._processing_lock.acquire(blocking=False):
            self.stats.frames_dropped += 1
            logger.debug("Frame in flight, dropping frame")
            return None

        events: list[tuple[str, dict[str, Any]]] = []
        try:
            result = self._process_locked(frame, boundary_region, events)
        finally:
            self._processing_lock.release()

        for event_type, payload in events:
            self._emit_event(event_type, payload)
        return result

    def _process_locked(
        self,
        frame: NDArray[np.uint8],
        boundary_region: Optional[BoundaryRegion],
        events: list[tuple[str, dict[str, Any]]],
    ) -> Optional[FrameResult]:
        if not DetectionUtils.is_valid_frame(frame):
            self.stats.invalid_frames += 1
            return FrameResult()

        now = time.monotonic()
        if (
            self._last_process_time is not None
            and now - self._last_process_time < self._min_interval
        ):
            self.stats.frames_dropped += 1
            return None
        self._last_process_time = now

        start_time = time.time()
        try:
            result = self._process_single_frame(frame, boundary_region)
        except Exception as e:
            logger.error(f"Frame processing failed: {e}", exc_info=True)
            self.stats.last_error = str(e)
            events.append(
                (
                    "error_occurred",
                    {"error": str(e), "frame_index": self._frame_counter + 1},
                )
            )
            return FrameResult()

        processing_time = time.time() - start_time
        self.stats.frames_processed += 1
        self.stats.avg_processing_time = (
            self.stats.avg_processing_time * (self.stats.frames_processed - 1)
            + processing_time
        ) / self.stats.frames_processed
        if result.statistics is not None:
            result.statistics.processing_time_ms = processing_time * 1000

        events.append(("frame_processed", result.to_dict()))
        if result.impact.did_occur:
            events.append(("impact_detected", result.to_dict()))
        return result

    def _process_single_frame(
        self,
        frame: NDArray[np.uint8],
        boundary_region: Optional[BoundaryRegion],
    ) -> FrameResult:
        with self._state_lock:
            generation = self._generation
            frame_index = self._frame_counter + 1
            reset_strategies = self._strategies_need_reset
            self._strategies_need_reset = False
        if reset_strategies:
            for strategy in self.strategies.values():
                strategy.reset()

        if (frame_index - 1) % self.config.calibration_interval_frames == 0:
            self.calibrate(frame)
        profile = self._profile
        mode = self._mode

        boundary = self._resolve_boundary(frame, boundary_region, profile)
        targets = self._resolve_targets(frame, profile, mode, boundary)
        candidate = self._detect_ball(frame, boundary, targets, profile)

        height, width = frame.shape[:2]
        frame_stats = FrameStatistics(
            frame_number=frame_index,
            average_brightness=LightingCalibrator.estimate_brightness(frame),
            frame_width=width,
            frame_height=height,
            processing_mode=mode,
            detection_method=candidate.method,
        )

        with self._state_lock:
            if generation != self._generation:
                self.stats.discarded_results += 1
                logger.debug("Session reset during frame, discarding ball result")
                return FrameResult(
                    targets=targets,
                    boundary_region=boundary,
                    statistics=frame_stats,
                )

            self._frame_counter = frame_index
            tracking = self.tracker.update(candidate, frame_index, (width, height))
            event = self._decide_impact(tracking, targets, boundary, frame_index)

        if candidate.is_detected:
            self.stats.ball_frames_detected += 1
        else:
            self.stats.ball_frames_missed += 1
        if event.did_occur:
            self.stats.impacts_reported += 1

        return FrameResult(
            targets=targets,
            boundary_region=boundary,
            ball=tracking.ball,
            impact=event,
            statistics=frame_stats,
        )

    def _decide_impact(
        self,
        tracking: TrackingResult,
        targets: Sequence[Target],
        boundary: Optional[BoundaryRegion],
        frame_index: int,
    ) -> ImpactEvent:
        """Impact check on tracker evidence; call with the state lock held.

        Only an accepted position is tested against the targets. A frame with
        no detection at all counts toward re-arming the latch. Other gate
        rejections, including a replayed last-accepted ball, report no impact
        and leave the latch untouched.
        """
        if tracking.accepted:
            event = self.decider.decide(tracking.ball, targets, boundary)
            return self.latch.update(event, frame_index)
        if tracking.decision == TrackDecision.NO_DETECTION:
            self.latch.update(ImpactEvent.none(), frame_index)
        return ImpactEvent.none()

    def _resolve_boundary(
        self,
        frame: NDArray[np.uint8],
        boundary_region: Optional[BoundaryRegion],
        profile: ColorProfile,
    ) -> Optional[BoundaryRegion]:
        if boundary_region is not None:
            return boundary_region.clamp_to(frame.shape)
        if self._locked_boundary is not None:
            return self._locked_boundary.clamp_to(frame.shape)
        if not self.config.auto_detect_boundary:
            return None

        boundary = self.target_detector.detect_boundary(frame, profile)
        if boundary is not None and self.config.auto_lock_boundary:
            self.lock_boundary(boundary)
        return boundary

    def _resolve_targets(
        self,
        frame: NDArray[np.uint8],
        profile: ColorProfile,
        mode: ProcessingMode,
        boundary: Optional[BoundaryRegion],
    ) -> list[Target]:
        with self._state_lock:
            locked = self._locked_targets
        if locked is not None:
            if boundary is not None and any(t.quadrant == 0 for t in locked):
                locked = TargetDetector.assign_quadrants(locked, boundary)
                with self._state_lock:
                    if self._locked_targets is not None:
                        self._locked_targets = locked
            return list(locked)

        targets = self.target_detector.detect_targets(frame, profile, mode)
        targets = TargetDetector.assign_quadrants(targets, boundary)
        self._last_targets = targets
        return targets

    def _detect_ball(
        self,
        frame: NDArray[np.uint8],
        boundary: Optional[BoundaryRegion],
        targets: Sequence[Target],
        profile: ColorProfile,
    ) -> BallCandidate:
        recent = list(self.tracker_state.position_history)
        if not self.config.crop_to_boundary or boundary is None:
            context = DetectionContext(profile, targets, recent)
            return self.selector.select(frame, context)

        x, y = boundary.x, boundary.y
        crop = frame[y : y + boundary.height, x : x + boundary.width]
        context = DetectionContext(
            profile,
            [t.translated(-x, -y) for t in targets],
            [(px - x, py - y) for px, py in recent],
        )
        return self.selector.select(crop, context).translated(x, y)

    # =========================================================================
    # Session control
    # =========================================================================

    def reset(self) -> None:
        """Clear tracking state and the impact latch. Always succeeds.

        A frame in flight finishes, but its ball and impact results are
        discarded.
        """
        with self._state_lock:
            self._generation += 1
            self.tracker.reset()
            self.latch.reset()
            self._strategies_need_reset = True
        logger.info("Tracking reset")

    def calibrate(self, frame: NDArray[np.uint8]) -> CalibrationResult:
        """Re-run lighting calibration now and swap in the selected profile."""
        result = self.calibrator.calibrate(frame)
        self._profile = result.profile
        self._last_calibration = result
        if self.config.adaptive_mode and self._mode_override is None:
            self._apply_mode(result.mode)
        return result

    def set_processing_mode(self, mode: Union[ProcessingMode, str, None]) -> bool:
        """Force a processing mode, or pass None to follow calibration again.

        Returns:
            False if the mode is not recognized (the current mode is kept)
        """
        if mode is None:
            self._mode_override = None
            return True
        try:
            new_mode = ProcessingMode(mode)
        except ValueError:
            logger.warning(f"Ignoring unknown processing mode '{mode}'")
            return False
        self._mode_override = new_mode
        self._apply_mode(new_mode)
        return True

    def _apply_mode(self, mode: ProcessingMode) -> None:
        if mode == self._mode:
            return
        logger.info(f"Processing mode {self._mode.value} -> {mode.value}")
        self._mode = mode
        self.selector = UnifiedSelector.build(
            self.strategies, mode, self.config.selector
        )

    @property
    def processing_mode(self) -> ProcessingMode:
        return self._mode

    @property
    def profile(self) -> ColorProfile:
        return self._profile

    def lock_boundary(self, boundary: BoundaryRegion) -> None:
        """Fix the goal boundary; locked targets get fresh quadrants."""
        with self._state_lock:
            self._locked_boundary = boundary
            if self._locked_targets is not None:
                self._locked_targets = TargetDetector.assign_quadrants(
                    [t.with_quadrant(0) for t in self._locked_targets], boundary
                )
        logger.info(f"Boundary locked at {boundary.to_dict()}")

    def unlock_boundary(self) -> None:
        with self._state_lock:
            self._locked_boundary = None

    def lock_targets(self, targets: Optional[Sequence[Target]] = None) -> list[Target]:
        """Treat targets as fixed; defaults to the most recently detected set."""
        chosen = list(targets) if targets is not None else list(self._last_targets)
        with self._state_lock:
            if self._locked_boundary is not None:
                chosen = TargetDetector.assign_quadrants(chosen, self._locked_boundary)
            self._locked_targets = chosen
        logger.info(f"Locked {len(chosen)} target(s)")
        return list(chosen)

    def unlock_targets(self) -> None:
        with self._state_lock:
            self._locked_targets = None

    @property
    def locked_targets(self) -> Optional[list[Target]]:
        with self._state_lock:
            if self._locked_targets is None:
                return None
            return list(self._locked_targets)

    @property
    def locked_boundary(self) -> Optional[BoundaryRegion]:
        return self._locked_boundary

    # =========================================================================
    # Analysis helpers
    # =========================================================================

    def detect_motion(self, frame: NDArray[np.uint8]) -> list[MotionRegion]:
        """Report every moving region (shares the session's background model)."""
        motion = self.strategies[DetectionMethod.MOTION]
        with self._processing_lock:
            return motion.detect_regions(frame)

    def analyze_frame_performance(self, frame: NDArray[np.uint8]) -> dict[str, Any]:
        """Time a brightness and contrast-enhancement pass over one frame."""
        if not DetectionUtils.is_valid_frame(frame):
            return {
                "processing_time_ms": 0.0,
                "average_brightness": 0.0,
                "frame_width": 0,
                "frame_height": 0,
                "processing_mode": self._mode.value,
            }

        start_time = time.perf_counter()
        brightness = LightingCalibrator.estimate_brightness(frame)
        DetectionUtils.enhance_contrast(frame)
        elapsed = time.perf_counter() - start_time
        return {
            "processing_time_ms": elapsed * 1000,
            "average_brightness": brightness,
            "frame_width": int(frame.shape[1]),
            "frame_height": int(frame.shape[0]),
            "processing_mode": self._mode.value,
        }

    def get_statistics(self) -> dict[str, Any]:
        """Get processing and tracking statistics."""
        tracking = self.tracker.get_tracking_statistics()
        calibration = self._last_calibration
        return {
            "frames_processed": self.stats.frames_processed,
            "frames_dropped": self.stats.frames_dropped,
            "invalid_frames": self.stats.invalid_frames,
            "discarded_results": self.stats.discarded_results,
            "avg_processing_time_ms": self.stats.avg_processing_time * 1000,
            "ball_frames_detected": self.stats.ball_frames_detected,
            "ball_frames_missed": self.stats.ball_frames_missed,
            "impacts_reported": self.stats.impacts_reported,
            "frame_counter": self._frame_counter,
            "tracker_state": tracking["state"],
            "velocity_magnitude": tracking["speed"],
            "tracking": tracking,
            "targets_detected": len(self._locked_targets or self._last_targets),
            "targets_locked": self._locked_targets is not None,
            "boundary_locked": self._locked_boundary is not None,
            "processing_mode": self._mode.value,
            "lighting_condition": calibration.condition.value if calibration else None,
            "last_calibration_brightness": (
                calibration.brightness if calibration else None
            ),
            "last_calibration_time": calibration.timestamp if calibration else None,
            "selector": self.selector.get_statistics(),
            "last_error": self.stats.last_error,
        }

    def subscribe_to_events(
        self, event_type: str, callback: Callable[..., Any]
    ) -> bool:
        """Subscribe to session events.

        Args:
            event_type: 'frame_processed', 'impact_detected' or 'error_occurred'
            callback: Called with the event payload dictionary

        Returns:
            True if subscription successful
        """
        if event_type in self._callbacks:
            self._callbacks[event_type].append(callback)
            return True
        return False

    def _emit_event(self, event_type: str, data: dict[str, Any]) -> None:
        for callback in self._callbacks.get(event_type, []):
            try:
                callback(data)
            except Exception as e:
                logger.warning(f"Error in event callback for {event_type}: {e}")

    def close(self) -> None:
        """Release the external model worker, if any."""
        if self.external_detector is not None:
            self.external_detector.close()


__all__ = [
    "DetectionSession",
    "VisionConfig",
    "SessionStatistics",
    "VisionSessionError",
    "BallCandidate",
    "BoundaryRegion",
    "DetectionMethod",
    "FrameResult",
    "ImpactEvent",
    "ProcessingMode",
    "Target",
    "TrackState",
]
