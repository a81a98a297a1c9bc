"""Touch gesture definitions: thresholds, accuracy presets and single-touch classification.

Distances are in pixels, durations in seconds.

Usage:
    thresholds = GestureThresholds.configure(accuracy="high", sensitivity=1.5)
    gesture = classify_touch(start, end, thresholds)
    if gesture:
        print(gesture.type.value, gesture.direction)
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Optional

import numpy as np

from input_engine.errors import EngineError, ErrorType


class GestureType(Enum):
    TAP = "tap"
    DRAG = "drag"
    SWIPE = "swipe"
    LONG_PRESS = "long_press"
    PINCH = "pinch"
    MULTI_FINGER = "multi_finger"


class Accuracy(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class GestureThresholds:
    """Classification thresholds. The field defaults are the canonical (medium) table."""
    swipe_min_distance: float = 50.0
    swipe_max_time: float = 0.5
    tap_max_duration: float = 0.2
    long_press_min_duration: float = 0.8
    pinch_min_distance: float = 20.0
    drag_threshold: float = 15.0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not np.isfinite(value) or value <= 0:
                raise EngineError(
                    ErrorType.PARSING_ERROR,
                    f"Threshold {f.name} must be a positive number, got {value!r}",
                )

    def merged(self, **overrides) -> GestureThresholds:
        """Copy with some thresholds replaced. Unknown keys raise PARSING_ERROR."""
        unknown = sorted(set(overrides) - threshold_names())
        if unknown:
            raise EngineError(
                ErrorType.PARSING_ERROR,
                f"Unknown gesture thresholds: {', '.join(unknown)}",
                {"allowed": sorted(threshold_names())},
            )
        return replace(self, **overrides)

    def scaled(self, sensitivity: float) -> GestureThresholds:
        """Divide every threshold by the sensitivity factor (0.1 to 2.0)."""
        if not 0.1 <= sensitivity <= 2.0:
            raise EngineError(
                ErrorType.PARSING_ERROR,
                f"Touch sensitivity must be between 0.1 and 2.0, got {sensitivity}",
            )
        return replace(self, **{k: round(v / sensitivity, 6) for k, v in self.to_dict().items()})

    @classmethod
    def configure(
        cls,
        accuracy: str | Accuracy = Accuracy.MEDIUM,
        sensitivity: float = 1.0,
        overrides: Optional[dict] = None,
    ) -> GestureThresholds:
        """Rebuild from the canonical table: preset, then sensitivity, then overrides."""
        try:
            accuracy = Accuracy(accuracy)
        except ValueError:
            raise EngineError(
                ErrorType.PARSING_ERROR,
                f"Unknown accuracy level: {accuracy!r}",
                {"allowed": [a.value for a in Accuracy]},
            ) from None

        thresholds = cls().merged(**ACCURACY_PRESETS[accuracy])
        if sensitivity != 1.0:
            thresholds = thresholds.scaled(sensitivity)
        if overrides:
            thresholds = thresholds.merged(**overrides)
        return thresholds

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> GestureThresholds:
        return cls().merged(**(data or {}))


def threshold_names() -> set[str]:
    return {f.name for f in fields(GestureThresholds)}


ACCURACY_PRESETS: dict[Accuracy, dict[str, float]] = {
    Accuracy.LOW: {
        "swipe_min_distance": 80.0,
        "tap_max_duration": 0.3,
        "long_press_min_duration": 0.6,
    },
    Accuracy.MEDIUM: {},
    Accuracy.HIGH: {
        "swipe_min_distance": 30.0,
        "tap_max_duration": 0.15,
        "long_press_min_duration": 1.0,
    },
}


@dataclass
class TouchPoint:
    """One sampled position of a touch."""
    id: int
    x: float
    y: float
    pressure: float = 0.5
    timestamp: float = field(default_factory=time.time)
    is_active: bool = True

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y], dtype=np.float64)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "x": self.x,
            "y": self.y,
            "pressure": self.pressure,
            "timestamp": self.timestamp,
            "is_active": self.is_active,
        }


@dataclass
class GestureEvent:
    """A recognized gesture."""
    type: GestureType
    fingers: int
    start: TouchPoint
    end: TouchPoint
    duration: float
    distance: float
    confidence: float
    direction: Optional[str] = None  # swipe: up/down/left/right, pinch: open/close
    velocity: float = 0.0  # px/s
    scale: Optional[float] = None  # pinch only
    session_id: Optional[str] = None
    touch_ids: list[int] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    @property
    def key(self) -> tuple[str, int]:
        """Identity used for confidence accumulation."""
        return self.type.value, self.fingers

    def to_dict(self) -> dict:
        data = {
            "type": self.type.value,
            "fingers": self.fingers,
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "duration": round(self.duration, 6),
            "distance": round(self.distance, 3),
            "confidence": self.confidence,
            "velocity": round(self.velocity, 3),
            "touch_ids": list(self.touch_ids),
            "timestamp": self.timestamp,
        }
        if self.direction is not None:
            data["direction"] = self.direction
        if self.scale is not None:
            data["scale"] = round(self.scale, 4)
        if self.session_id is not None:
            data["session_id"] = self.session_id
        return data


@dataclass
class DragResult:
    is_drag: bool
    distance: float
    threshold: float

    def to_dict(self) -> dict:
        return asdict(self)


def distance(a: TouchPoint, b: TouchPoint) -> float:
    return float(np.linalg.norm(b.position - a.position))


def detect_drag(
    start: tuple[float, float],
    end: tuple[float, float],
    threshold: Optional[float] = None,
) -> DragResult:
    """Whether the move from start to end exceeds the drag threshold, regardless of timing."""
    if threshold is None:
        threshold = GestureThresholds().drag_threshold
    dist = float(np.linalg.norm(np.asarray(end, dtype=np.float64) - np.asarray(start, dtype=np.float64)))
    return DragResult(is_drag=dist >= threshold, distance=dist, threshold=threshold)


def swipe_direction(start: TouchPoint, end: TouchPoint) -> str:
    """Dominant-axis direction in screen coordinates (y grows downwards)."""
    dx = end.x - start.x
    dy = end.y - start.y
    if abs(dx) >= abs(dy):
        return "right" if dx >= 0 else "left"
    return "down" if dy >= 0 else "up"


def _margin(value: float, limit: float) -> float:
    """Confidence in [0.5, 1.0]: 1.0 far inside the limit, 0.5 at the limit."""
    if limit <= 0:
        return 0.5
    return round(max(0.5, min(1.0, 1.0 - 0.5 * value / limit)), 3)


def _excess(value: float, limit: float) -> float:
    """Confidence in [0.5, 1.0] growing as value exceeds limit, saturating at 2x."""
    if limit <= 0:
        return 1.0
    return round(max(0.5, min(1.0, 0.5 * value / limit)), 3)


def classify_touch(
    start: TouchPoint,
    end: TouchPoint,
    thresholds: GestureThresholds,
    session_id: Optional[str] = None,
) -> Optional[GestureEvent]:
    """Classify a finished single touch from its first and last points.

    Returns None when the touch matches no gesture.
    """
    dist = distance(start, end)
    duration = max(0.0, end.timestamp - start.timestamp)

    gesture_type = None
    direction = None
    confidence = 0.0

    if dist < thresholds.swipe_min_distance and duration <= thresholds.tap_max_duration:
        gesture_type = GestureType.TAP
        confidence = _margin(dist, thresholds.swipe_min_distance)
    elif dist < thresholds.swipe_min_distance and duration >= thresholds.long_press_min_duration:
        gesture_type = GestureType.LONG_PRESS
        confidence = _margin(dist, thresholds.swipe_min_distance)
    elif dist >= thresholds.swipe_min_distance and duration <= thresholds.swipe_max_time:
        gesture_type = GestureType.SWIPE
        direction = swipe_direction(start, end)
        confidence = _excess(dist, thresholds.swipe_min_distance)
    elif dist >= thresholds.drag_threshold:
        gesture_type = GestureType.DRAG
        confidence = _excess(dist, thresholds.drag_threshold)

    if gesture_type is None:
        return None

    return GestureEvent(
        type=gesture_type,
        fingers=1,
        start=start,
        end=end,
        duration=duration,
        distance=dist,
        confidence=confidence,
        direction=direction,
        velocity=dist / duration if duration > 0 else 0.0,
        session_id=session_id,
        touch_ids=[start.id],
        timestamp=end.timestamp,
    )
