"""Confidence-weighted fusion of the ball detection strategies."""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from ..models import BallCandidate, DetectionMethod, ProcessingMode
from .balls import BallDetectionStrategy, DetectionContext

logger = logging.getLogger(__name__)


@dataclass
class SelectorEntry:
    """One strategy in the fallback chain.

    The strategy runs only while the running best confidence is below
    ``gate``; ``None`` means it always runs. A successful candidate is
    reported with ``weight`` as its confidence.
    """

    strategy: BallDetectionStrategy
    weight: float
    gate: Optional[float] = None

    @property
    def method(self) -> DetectionMethod:
        return self.strategy.method


DEFAULT_WEIGHTS: dict[DetectionMethod, tuple[float, Optional[float]]] = {
    DetectionMethod.EXTERNAL_MODEL: (0.9, None),
    DetectionMethod.BALL_SPECIFIC: (0.9, 0.9),
    DetectionMethod.SHAPE: (0.6, 0.7),
    DetectionMethod.FREQUENCY: (0.5, 0.6),
    DetectionMethod.COLOR: (0.4, 0.5),
    DetectionMethod.MOTION: (0.3, 0.3),
}

CHAIN_ORDER = (
    DetectionMethod.EXTERNAL_MODEL,
    DetectionMethod.BALL_SPECIFIC,
    DetectionMethod.SHAPE,
    DetectionMethod.FREQUENCY,
    DetectionMethod.COLOR,
    DetectionMethod.MOTION,
)


class UnifiedSelector:
    """Run strategies in priority order and keep the highest-weighted hit."""

    def __init__(self, entries: Sequence[SelectorEntry]) -> None:
        self.entries = list(entries)
        self.stats: dict[str, Any] = {
            "selections": 0,
            "no_detection": 0,
            "strategy_errors": 0,
            "method_counts": {method.value: 0 for method in DetectionMethod},
        }

    @classmethod
    def build(
        cls,
        strategies: dict[DetectionMethod, BallDetectionStrategy],
        mode: ProcessingMode = ProcessingMode.BALANCED,
        config: Optional[dict[str, Any]] = None,
    ) -> "UnifiedSelector":
        """Assemble the default chain from available strategies.

        The frequency strategy only takes part in accurate mode and the
        external model only when one is supplied.

        Args:
            strategies: Strategy instances keyed by method
            mode: Current processing mode
            config: ``vision.selector`` section with optional ``weights`` and
                ``gates`` overrides keyed by method name
        """
        config = config or {}
        weights = config.get("weights", {})
        gates = config.get("gates", {})

        entries = []
        for method in CHAIN_ORDER:
            strategy = strategies.get(method)
            if strategy is None:
                continue
            if method == DetectionMethod.FREQUENCY and mode != ProcessingMode.ACCURATE:
                continue
            default_weight, default_gate = DEFAULT_WEIGHTS[method]
            entries.append(
                SelectorEntry(
                    strategy=strategy,
                    weight=float(weights.get(method.value, default_weight)),
                    gate=gates.get(method.value, default_gate),
                )
            )
        return cls(entries)

    @property
    def methods(self) -> list[DetectionMethod]:
        return [entry.method for entry in self.entries]

    def select(
        self, frame: NDArray[np.uint8], context: Optional[DetectionContext] = None
    ) -> BallCandidate:
        """Return the best candidate for the frame, or the sentinel."""
        self.stats["selections"] += 1
        best = BallCandidate.not_detected()

        for entry in self.entries:
            if entry.gate is not None and best.confidence >= entry.gate:
                continue

            try:
                candidate = entry.strategy.detect(frame, context)
            except Exception as e:
                self.stats["strategy_errors"] += 1
                logger.error(f"{entry.method.value} detection failed: {e}")
                continue

            if candidate.is_detected and entry.weight > best.confidence:
                best = candidate.with_confidence(entry.weight)

        self.stats["method_counts"][best.method.value] += 1
        if not best.is_detected:
            self.stats["no_detection"] += 1
        else:
            logger.debug(
                f"Selected {best.method.value} at {best.position} "
                f"(confidence {best.confidence:.2f})"
            )
        return best

    def reset(self) -> None:
        for entry in self.entries:
            entry.strategy.reset()

    def get_statistics(self) -> dict[str, Any]:
        stats = dict(self.stats)
        stats["method_counts"] = dict(self.stats["method_counts"])
        return stats
