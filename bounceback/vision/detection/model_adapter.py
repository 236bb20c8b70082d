"""Adapter that runs a pretrained ball detector as one ensemble strategy.

The model is an opaque oracle: it takes a fixed-size square BGR image and
returns per-box class confidences plus normalized center-based boxes
(cx, cy, w, h). The adapter runs it under two framings:

1. A center square crop, remapped back to full-frame normalized space
2. The whole frame stretched to the square input

Framing 2 runs only when framing 1 is missing or below the acceptance
confidence. Each call is bounded by a timeout; a timeout or a model failure
means "no candidate" for that framing.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

import cv2
import numpy as np
from numpy.typing import NDArray

from ..models import BallCandidate, DetectionMethod
from .balls import BallDetectionStrategy, DetectionContext
from .utils import DetectionUtils

logger = logging.getLogger(__name__)

NormalizedBox = tuple[float, float, float, float]  # cx, cy, w, h in [0, 1]


class BallModel(Protocol):
    """Pretrained detector contract."""

    def predict(
        self, image: NDArray[np.uint8]
    ) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
        """Return (confidences[N, C], boxes[N, 4]) for a square BGR image."""
        ...


@dataclass(frozen=True)
class ModelDetection:
    """Best ball box reported by the model for one framing."""

    box: NormalizedBox
    confidence: float
    class_index: int
    label: str


@dataclass
class ExternalModelConfig:
    """Configuration for the external model adapter."""

    input_size: int = 960
    min_confidence: float = 0.35
    accept_confidence: float = 0.5
    max_aspect_deviation: float = 0.5
    max_box_dimension: float = 0.5
    timeout_s: float = 0.5
    ball_labels: tuple[str, ...] = ("ball", "soccer", "class0")

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ExternalModelConfig":
        filters = config.get("filters", {})
        return cls(
            input_size=int(config.get("input_size", 960)),
            min_confidence=float(config.get("min_confidence", 0.35)),
            accept_confidence=float(config.get("accept_confidence", 0.5)),
            max_aspect_deviation=float(filters.get("max_aspect_deviation", 0.5)),
            max_box_dimension=float(filters.get("max_box_dimension", 0.5)),
            timeout_s=float(config.get("timeout_s", 0.5)),
            ball_labels=tuple(
                label.lower()
                for label in config.get("ball_labels", ("ball", "soccer", "class0"))
            ),
        )


# =============================================================================
# Output parsing and geometry
# =============================================================================


def label_for_class(
    class_index: int, class_names: Optional[dict[int, str]] = None
) -> str:
    if class_names and class_index in class_names:
        return str(class_names[class_index])
    return f"class{class_index}"


def is_ball_class(label: str, class_index: int, ball_labels: Sequence[str]) -> bool:
    """Allow-listed label, or class index 0."""
    return label.lower() in ball_labels or class_index == 0


def clamp_box_to_unit(box: NormalizedBox) -> Optional[NormalizedBox]:
    """Clip a center-based box to the unit square; None if nothing remains."""
    cx, cy, w, h = box
    x1 = min(1.0, max(0.0, cx - w / 2))
    y1 = min(1.0, max(0.0, cy - h / 2))
    x2 = min(1.0, max(0.0, cx + w / 2))
    y2 = min(1.0, max(0.0, cy + h / 2))
    if x2 <= x1 or y2 <= y1:
        return None
    return ((x1 + x2) / 2, (y1 + y2) / 2, x2 - x1, y2 - y1)


def parse_model_output(
    confidences: NDArray[np.float32],
    coordinates: NDArray[np.float32],
    min_confidence: float = 0.35,
    ball_labels: Sequence[str] = ("ball", "soccer", "class0"),
    class_names: Optional[dict[int, str]] = None,
) -> Optional[ModelDetection]:
    """Pick the most confident ball box from raw model output.

    Each box is assigned its highest-scoring class. Boxes whose class is not
    a ball class, or whose confidence is below ``min_confidence``, are
    discarded.

    Args:
        confidences: Array of shape (N, C) with per-class confidences
        coordinates: Array of shape (N, 4) with normalized cx, cy, w, h
        min_confidence: Discard floor
        ball_labels: Lower-case labels accepted as "ball"
        class_names: Optional class index to label mapping

    Returns:
        Best detection or None
    """
    confidences = np.asarray(confidences, dtype=np.float32)
    coordinates = np.asarray(coordinates, dtype=np.float32).reshape(-1, 4)
    box_count = coordinates.shape[0]
    if box_count == 0 or confidences.size == 0:
        return None

    confidences = confidences.reshape(box_count, -1)
    best: Optional[ModelDetection] = None
    for index in range(box_count):
        class_index = int(np.argmax(confidences[index]))
        confidence = float(confidences[index, class_index])
        if confidence < min_confidence:
            continue

        label = label_for_class(class_index, class_names)
        if not is_ball_class(label, class_index, ball_labels):
            continue

        box = clamp_box_to_unit(tuple(float(v) for v in coordinates[index]))
        if box is None:
            continue

        if best is None or confidence > best.confidence:
            best = ModelDetection(
                box=box, confidence=confidence, class_index=class_index, label=label
            )
    return best


def center_square_crop(
    frame: NDArray[np.uint8],
) -> tuple[NDArray[np.uint8], int, int, int]:
    """Largest centered square of the frame as (crop, offset_x, offset_y, edge)."""
    height, width = frame.shape[:2]
    edge = min(width, height)
    offset_x = (width - edge) // 2
    offset_y = (height - edge) // 2
    crop = frame[offset_y : offset_y + edge, offset_x : offset_x + edge]
    return crop, offset_x, offset_y, edge


def remap_crop_box(
    box: NormalizedBox,
    offset_x: int,
    offset_y: int,
    edge: int,
    frame_width: int,
    frame_height: int,
) -> NormalizedBox:
    """Map a box from crop-normalized to frame-normalized coordinates."""
    cx, cy, w, h = box
    return (
        (offset_x + cx * edge) / frame_width,
        (offset_y + cy * edge) / frame_height,
        w * edge / frame_width,
        h * edge / frame_height,
    )


def is_plausible_box(
    box: NormalizedBox,
    frame_width: int,
    frame_height: int,
    max_aspect_deviation: float = 0.5,
    max_box_dimension: float = 0.5,
) -> bool:
    """Reject boxes that are far from square or implausibly large."""
    _, _, w, h = box
    if w <= 0 or h <= 0:
        return False
    if w > max_box_dimension or h > max_box_dimension:
        return False
    aspect = (w * frame_width) / (h * frame_height)
    return abs(aspect - 1.0) <= max_aspect_deviation


def box_to_pixels(
    box: NormalizedBox, frame_width: int, frame_height: int
) -> tuple[tuple[float, float], float]:
    """Pixel center and radius (half the larger box side)."""
    cx, cy, w, h = box
    radius = max(w * frame_width, h * frame_height) / 2.0
    return (cx * frame_width, cy * frame_height), radius


# =============================================================================
# Strategy
# =============================================================================


class ExternalModelDetector(BallDetectionStrategy):
    """Ensemble strategy backed by a BallModel oracle."""

    method = DetectionMethod.EXTERNAL_MODEL

    def __init__(
        self, model: BallModel, config: Optional[dict[str, Any]] = None
    ) -> None:
        self.model = model
        self.config = ExternalModelConfig.from_config(config or {})
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="ball-model"
        )
        self._pending: Optional[Future] = None
        self.stats = {
            "calls": 0,
            "timeouts": 0,
            "failures": 0,
            "skipped_busy": 0,
            "crop_accepted": 0,
            "full_frame_used": 0,
        }

    @property
    def class_names(self) -> Optional[dict[int, str]]:
        return getattr(self.model, "class_names", None)

    def _predict(self, image: NDArray[np.uint8]) -> Optional[ModelDetection]:
        if self._pending is not None and not self._pending.done():
            # A timed-out call still owns the worker
            self.stats["skipped_busy"] += 1
            logger.debug("Ball model still busy, skipping framing")
            return None

        self.stats["calls"] += 1
        future = self._executor.submit(self.model.predict, image)
        self._pending = future
        try:
            confidences, coordinates = future.result(timeout=self.config.timeout_s)
        except FutureTimeoutError:
            self.stats["timeouts"] += 1
            logger.warning(
                f"Ball model timed out after {self.config.timeout_s:.2f}s"
            )
            return None
        except Exception as e:
            self.stats["failures"] += 1
            logger.error(f"Ball model inference failed: {e}")
            return None

        return parse_model_output(
            confidences,
            coordinates,
            min_confidence=self.config.min_confidence,
            ball_labels=self.config.ball_labels,
            class_names=self.class_names,
        )

    def _plausible(
        self, detection: Optional[ModelDetection], width: int, height: int
    ) -> Optional[ModelDetection]:
        if detection is None:
            return None
        if not is_plausible_box(
            detection.box,
            width,
            height,
            self.config.max_aspect_deviation,
            self.config.max_box_dimension,
        ):
            logger.debug(f"Rejected implausible model box {detection.box}")
            return None
        return detection

    def detect(
        self, frame: NDArray[np.uint8], context: Optional[DetectionContext] = None
    ) -> BallCandidate:
        if not DetectionUtils.is_valid_frame(frame):
            return BallCandidate.not_detected()

        height, width = frame.shape[:2]
        size = (self.config.input_size, self.config.input_size)

        crop, offset_x, offset_y, edge = center_square_crop(frame)
        crop_detection = self._predict(cv2.resize(crop, size))
        if crop_detection is not None:
            crop_detection = ModelDetection(
                box=remap_crop_box(
                    crop_detection.box, offset_x, offset_y, edge, width, height
                ),
                confidence=crop_detection.confidence,
                class_index=crop_detection.class_index,
                label=crop_detection.label,
            )
        best = self._plausible(crop_detection, width, height)

        if best is not None and best.confidence >= self.config.accept_confidence:
            self.stats["crop_accepted"] += 1
        else:
            full_detection = self._plausible(
                self._predict(cv2.resize(frame, size)), width, height
            )
            if full_detection is not None and (
                best is None or full_detection.confidence > best.confidence
            ):
                self.stats["full_frame_used"] += 1
                best = full_detection

        if best is None:
            return BallCandidate.not_detected()

        center, radius = box_to_pixels(best.box, width, height)
        return BallCandidate.detected(center, radius, best.confidence, self.method)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def get_statistics(self) -> dict[str, Any]:
        return self.stats.copy()


# =============================================================================
# Ultralytics-backed model
# =============================================================================


class UltralyticsBallModel:
    """BallModel implementation on top of an ultralytics YOLO checkpoint.

    The model is loaded on first use.
    """

    def __init__(
        self,
        model_path: str,
        device: str = "cpu",
        confidence: float = 0.25,
        iou: float = 0.45,
    ) -> None:
        self.model_path = model_path
        self.device = device
        self.confidence = confidence
        self.iou = iou
        self.model = None
        self.class_names: Optional[dict[int, str]] = None
        self._model_lock = threading.RLock()

    def _load_model(self) -> None:
        path = Path(self.model_path)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {self.model_path}")

        try:
            from ultralytics import YOLO
        except ImportError as e:
            raise ImportError(
                "ultralytics package not installed. "
                "Install with: pip install bounceback-trainer[model]"
            ) from e

        logger.info(f"Loading ball model from {self.model_path}")
        self.model = YOLO(str(path))
        if getattr(self.model, "names", None):
            self.class_names = dict(self.model.names)
            logger.info(f"Ball model classes: {self.class_names}")

    def predict(
        self, image: NDArray[np.uint8]
    ) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
        with self._model_lock:
            if self.model is None:
                self._load_model()
            results = self.model(
                image,
                conf=self.confidence,
                iou=self.iou,
                device=self.device,
                verbose=False,
            )

        class_count = max(len(self.class_names or {}), 1)
        if not results or getattr(results[0], "boxes", None) is None:
            return (
                np.zeros((0, class_count), dtype=np.float32),
                np.zeros((0, 4), dtype=np.float32),
            )

        boxes = results[0].boxes
        coordinates = boxes.xywhn.cpu().numpy().astype(np.float32)
        classes = boxes.cls.cpu().numpy().astype(int)
        scores = boxes.conf.cpu().numpy().astype(np.float32)

        if len(classes):
            class_count = max(class_count, int(classes.max()) + 1)
        confidences = np.zeros((len(classes), class_count), dtype=np.float32)
        confidences[np.arange(len(classes)), classes] = scores
        return confidences, coordinates
