"""Temporal validation of the selected ball candidate across frames."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..detection.utils import DetectionUtils
from ..models import BallCandidate, TrackerState, TrackState

logger = logging.getLogger(__name__)


class TrackDecision(Enum):
    """Why a frame's candidate was or was not accepted."""

    ACCEPTED = "accepted"
    NO_DETECTION = "no_detection"
    WARMING_UP = "warming_up"
    INCONSISTENT = "inconsistent"
    TOO_SLOW = "too_slow"
    COOLDOWN = "cooldown"
    LOW_CONFIDENCE = "low_confidence"


@dataclass(frozen=True)
class TrackingResult:
    """Tracker output for one frame."""

    ball: BallCandidate
    decision: TrackDecision
    state: TrackState
    velocity: tuple[float, float] = (0.0, 0.0)

    @property
    def accepted(self) -> bool:
        return self.decision == TrackDecision.ACCEPTED


@dataclass
class TrackerConfig:
    """Gate thresholds for the temporal tracker.

    The confidence formula and its constants are heuristic starting values.
    """

    history_size: int = 5
    min_history: int = 3
    max_consistency_distance: float = 80.0
    min_velocity: float = 2.0
    cooldown_frames: int = 15
    min_confidence: float = 0.6
    max_missed_frames: int = 10
    position_weight: float = 0.5
    edge_margin_px: float = 20.0
    velocity_scale: float = 10.0

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "TrackerConfig":
        gates = config.get("gates", {})
        scoring = config.get("confidence", {})
        return cls(
            history_size=int(config.get("history_size", 5)),
            min_history=int(config.get("min_history", 3)),
            max_consistency_distance=float(
                gates.get("max_consistency_distance", 80.0)
            ),
            min_velocity=float(gates.get("min_velocity", 2.0)),
            cooldown_frames=int(gates.get("cooldown_frames", 15)),
            min_confidence=float(gates.get("min_confidence", 0.6)),
            max_missed_frames=int(config.get("max_missed_frames", 10)),
            position_weight=float(scoring.get("position_weight", 0.5)),
            edge_margin_px=float(scoring.get("edge_margin_px", 20.0)),
            velocity_scale=float(scoring.get("velocity_scale", 10.0)),
        )


class TemporalTracker:
    """Idle/Tracking/Lost state machine over a session-owned TrackerState.

    Per frame:
    - A detected position is appended to the bounded history
    - Nothing is accepted until ``min_history`` positions are present
    - The two most recent positions must be within ``max_consistency_distance``;
      otherwise the last accepted ball is reported again
    - After a first acceptance, later ones need at least ``min_velocity``
      pixels/frame since the previous acceptance and ``cooldown_frames``
      elapsed frames
    - The derived position/velocity confidence must reach ``min_confidence``
    - More than ``max_missed_frames`` consecutive misses moves Tracking to Lost
      and clears the history
    """

    def __init__(
        self,
        config: Optional[dict[str, Any]] = None,
        state: Optional[TrackerState] = None,
    ) -> None:
        self.config = TrackerConfig.from_config(config or {})
        self.state = state or TrackerState(history_size=self.config.history_size)
        self.stats: dict[str, Any] = {
            "updates": 0,
            "lost_transitions": 0,
            "decisions": {decision.value: 0 for decision in TrackDecision},
        }

    def update(
        self,
        candidate: BallCandidate,
        frame_index: int,
        frame_size: Optional[tuple[int, int]] = None,
    ) -> TrackingResult:
        """Feed one frame's selected candidate.

        Args:
            candidate: Unified selector output (may be the sentinel)
            frame_index: Monotonic frame counter of the session
            frame_size: (width, height) used for the edge-distance score

        Returns:
            The ball to report for this frame and the gate decision
        """
        self.stats["updates"] += 1
        st = self.state
        st.frames_since_last_acceptance += 1

        if not candidate.is_detected:
            return self._handle_miss()

        st.consecutive_misses = 0
        if st.state == TrackState.LOST:
            st.state = TrackState.IDLE

        st.position_history.append(candidate.position)
        if len(st.position_history) < self.config.min_history:
            return self._reject(TrackDecision.WARMING_UP)

        previous, latest = st.position_history[-2], st.position_history[-1]
        if (
            DetectionUtils.calculate_distance(previous, latest)
            > self.config.max_consistency_distance
        ):
            fallback = st.last_accepted or BallCandidate.not_detected()
            return self._result(fallback, TrackDecision.INCONSISTENT)

        velocity = (0.0, 0.0)
        speed: Optional[float] = None
        if st.last_accepted_position is not None:
            elapsed = max(1, frame_index - (st.last_accepted_frame_index or 0))
            dx = candidate.position[0] - st.last_accepted_position[0]
            dy = candidate.position[1] - st.last_accepted_position[1]
            velocity = (dx / elapsed, dy / elapsed)
            speed = DetectionUtils.calculate_distance((0.0, 0.0), velocity)
            if speed < self.config.min_velocity:
                return self._reject(TrackDecision.TOO_SLOW)

        last_index = st.last_accepted_frame_index
        if (
            last_index is not None
            and frame_index - last_index < self.config.cooldown_frames
        ):
            return self._reject(TrackDecision.COOLDOWN)

        confidence = self.derived_confidence(candidate.position, speed, frame_size)
        if confidence < self.config.min_confidence:
            return self._reject(TrackDecision.LOW_CONFIDENCE)

        accepted = candidate.with_confidence(confidence)
        if st.state != TrackState.TRACKING:
            logger.info(f"Ball tracking started at {accepted.position}")
        st.state = TrackState.TRACKING
        st.last_accepted = accepted
        st.last_accepted_position = accepted.position
        st.last_accepted_frame_index = frame_index
        st.velocity = velocity
        st.consecutive_accepted_count += 1
        st.frames_since_last_acceptance = 0
        return self._result(accepted, TrackDecision.ACCEPTED)

    def derived_confidence(
        self,
        position: tuple[int, int],
        speed: Optional[float],
        frame_size: Optional[tuple[int, int]] = None,
    ) -> float:
        """Weighted blend of distance-from-edge and speed scores."""
        cfg = self.config
        position_score = 1.0
        if frame_size is not None and cfg.edge_margin_px > 0:
            width, height = frame_size
            x, y = position
            edge_distance = min(x, y, width - 1 - x, height - 1 - y)
            position_score = min(1.0, max(0.0, edge_distance / cfg.edge_margin_px))

        velocity_score = 1.0
        if speed is not None and cfg.velocity_scale > 0:
            velocity_score = min(1.0, speed / cfg.velocity_scale)

        return (
            cfg.position_weight * position_score
            + (1.0 - cfg.position_weight) * velocity_score
        )

    def _handle_miss(self) -> TrackingResult:
        st = self.state
        st.consecutive_misses += 1
        if st.consecutive_misses > self.config.max_missed_frames and (
            st.state == TrackState.TRACKING or st.position_history
        ):
            if st.state == TrackState.TRACKING:
                st.state = TrackState.LOST
                self.stats["lost_transitions"] += 1
                logger.info(
                    f"Ball lost after {st.consecutive_misses} missed frames"
                )
            st.clear_history()
            st.last_accepted = None
            st.last_accepted_position = None
            st.velocity = (0.0, 0.0)
            st.consecutive_accepted_count = 0
        return self._reject(TrackDecision.NO_DETECTION)

    def _reject(self, decision: TrackDecision) -> TrackingResult:
        logger.debug(f"Tracker rejected candidate: {decision.value}")
        return self._result(BallCandidate.not_detected(), decision)

    def _result(self, ball: BallCandidate, decision: TrackDecision) -> TrackingResult:
        self.stats["decisions"][decision.value] += 1
        return TrackingResult(
            ball=ball,
            decision=decision,
            state=self.state.state,
            velocity=self.state.velocity,
        )

    def reset(self) -> None:
        """Clear all tracking state; the statistics counters are kept."""
        self.state.reset()

    def get_tracking_statistics(self) -> dict[str, Any]:
        st = self.state
        stats = dict(self.stats)
        stats["decisions"] = dict(self.stats["decisions"])
        stats.update(
            {
                "state": st.state.value,
                "history_length": len(st.position_history),
                "consecutive_accepted_count": st.consecutive_accepted_count,
                "consecutive_misses": st.consecutive_misses,
                "frames_since_last_acceptance": st.frames_since_last_acceptance,
                "velocity": st.velocity,
                "speed": DetectionUtils.calculate_distance((0.0, 0.0), st.velocity),
                "last_accepted_position": st.last_accepted_position,
            }
        )
        return stats
