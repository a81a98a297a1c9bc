"""Per-touch gesture state machine.

Each (session, touch id) pair moves IDLE -> ACTIVE -> MOVING -> ENDED.
Gestures are classified only when a touch ends: single touches from their
first and last points, concurrent touches as a multi-touch group.

The recognizer is also an ingress consumer: ``touch`` events whose payload
carries ``action``, ``x``, ``y`` and ``touch_id`` feed the state machine.

Usage:
    recognizer = GestureRecognizer()
    recognizer.on_gesture(lambda g: print(g.type.value))
    recognizer.simulate_touch("s1", 10, 10, timestamp=0.0)
    gesture = recognizer.simulate_release("s1", 12, 11, timestamp=0.1)  # tap
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from input_engine.errors import EngineError, ErrorType
from input_engine.events import EventType, InputEvent
from input_engine.gestures import (
    GestureEvent,
    GestureThresholds,
    TouchPoint,
    classify_touch,
)
from input_engine.metrics import MetricsCollector
from input_engine.multitouch import MultiTouchTracker

logger = logging.getLogger("input_engine.recognizer")

DEFAULT_SESSION = "default"


class TouchAction(Enum):
    TOUCH = "touch"
    MOVE = "move"
    RELEASE = "release"
    CANCEL = "cancel"


class TouchState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    MOVING = "moving"
    ENDED = "ended"


@dataclass
class TouchInput:
    """One raw touch sample fed to the state machine."""
    action: TouchAction
    x: float
    y: float
    touch_id: int = 1
    pressure: float = 0.5
    timestamp: Optional[float] = None
    session_id: str = DEFAULT_SESSION

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "x": self.x,
            "y": self.y,
            "touch_id": self.touch_id,
            "pressure": self.pressure,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
        }

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        session_id: Optional[str] = None,
        timestamp: Optional[float] = None,
    ) -> TouchInput:
        """Build a sample from a touch event payload. Raises PARSING_ERROR when malformed."""
        try:
            action = TouchAction(payload["action"])
            x = float(payload["x"])
            y = float(payload["y"])
            touch_id = int(payload.get("touch_id", 1))
            pressure = float(payload.get("pressure", 0.5))
        except KeyError as e:
            raise EngineError(ErrorType.PARSING_ERROR, f"Touch payload missing {e}") from None
        except (TypeError, ValueError) as e:
            raise EngineError(ErrorType.PARSING_ERROR, f"Invalid touch payload: {e}") from None

        ts = payload.get("timestamp", timestamp)
        return cls(
            action=action,
            x=x,
            y=y,
            touch_id=touch_id,
            pressure=pressure,
            timestamp=float(ts) if ts is not None else None,
            session_id=session_id or DEFAULT_SESSION,
        )


@dataclass
class _Touch:
    first: TouchPoint
    last: TouchPoint
    state: TouchState


class GestureRecognizer:
    """Touch state machine with single and multi-touch classification."""

    def __init__(
        self,
        thresholds: Optional[GestureThresholds] = None,
        metrics: Optional[MetricsCollector] = None,
        palm_rejection: bool = False,
        palm_pressure_threshold: float = 0.8,
        multi_touch_enabled: bool = True,
        history_limit: int = 1000,
    ):
        self.thresholds = thresholds or GestureThresholds()
        self.metrics = metrics
        self.palm_rejection = palm_rejection
        self.palm_pressure_threshold = palm_pressure_threshold
        self.multi_touch_enabled = multi_touch_enabled
        self.history_limit = history_limit

        self._touches: dict[tuple[str, int], _Touch] = {}
        self._multi = MultiTouchTracker()
        self._touch_history: list[TouchInput] = []
        self._gesture_history: list[GestureEvent] = []
        self._listeners: list[Callable[[GestureEvent], None]] = []

    def on_gesture(self, callback: Callable[[GestureEvent], None]):
        """Register a callback for recognized gestures."""
        self._listeners.append(callback)

    def off_gesture(self, callback: Callable[[GestureEvent], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    # --- Configuration ---

    def configure_thresholds(self, **overrides) -> GestureThresholds:
        """Merge threshold overrides into the current set."""
        self.thresholds = self.thresholds.merged(**overrides)
        logger.info("Gesture thresholds updated: %s", overrides)
        return self.thresholds

    def configure(
        self,
        accuracy: str = "medium",
        sensitivity: float = 1.0,
        overrides: Optional[dict] = None,
        palm_rejection: Optional[bool] = None,
        multi_touch_enabled: Optional[bool] = None,
    ) -> GestureThresholds:
        """Rebuild thresholds from the canonical table and apply touch options."""
        thresholds = GestureThresholds.configure(accuracy, sensitivity, overrides)
        self.thresholds = thresholds
        if palm_rejection is not None:
            self.palm_rejection = palm_rejection
        if multi_touch_enabled is not None:
            self.multi_touch_enabled = multi_touch_enabled
        logger.info(
            "Touch configured: accuracy=%s sensitivity=%.2f palm_rejection=%s",
            accuracy, sensitivity, self.palm_rejection,
        )
        return thresholds

    def capabilities(self) -> dict:
        return {
            "enabled": True,
            "multi_touch": self.multi_touch_enabled,
            "gesture_support": True,
            "palm_rejection": self.palm_rejection,
            "haptic_feedback": False,
            "gestures": ["tap", "drag", "swipe", "long_press", "pinch", "multi_finger"],
        }

    # --- State machine ---

    def process(self, sample: TouchInput) -> Optional[GestureEvent]:
        """Advance the state machine by one sample. Returns a gesture if one completed."""
        if sample.timestamp is None:
            sample.timestamp = time.time()
        self._record_sample(sample)

        if sample.action == TouchAction.TOUCH:
            self._touch_down(sample)
            return None
        if sample.action == TouchAction.MOVE:
            self._touch_move(sample)
            return None
        return self._touch_end(sample, cancelled=sample.action == TouchAction.CANCEL)

    def _point(self, sample: TouchInput) -> TouchPoint:
        return TouchPoint(
            id=sample.touch_id,
            x=sample.x,
            y=sample.y,
            pressure=sample.pressure,
            timestamp=sample.timestamp,
        )

    def _touch_down(self, sample: TouchInput):
        key = (sample.session_id, sample.touch_id)
        if key in self._touches:
            raise EngineError(
                ErrorType.PARSING_ERROR,
                f"Touch {sample.touch_id} is already active in session {sample.session_id}",
                {"session_id": sample.session_id, "touch_id": sample.touch_id},
            )
        if self.palm_rejection and sample.pressure > self.palm_pressure_threshold:
            logger.debug("Palm rejected touch %d (pressure %.2f)", sample.touch_id, sample.pressure)
            return

        point = self._point(sample)
        self._touches[key] = _Touch(first=point, last=point, state=TouchState.ACTIVE)
        self._observe_group(sample.session_id)

    def _touch_move(self, sample: TouchInput):
        touch = self._touches.get((sample.session_id, sample.touch_id))
        if touch is None:
            return
        touch.last = self._point(sample)
        touch.state = TouchState.MOVING
        self._observe_group(sample.session_id)

    def _touch_end(self, sample: TouchInput, cancelled: bool) -> Optional[GestureEvent]:
        touch = self._touches.pop((sample.session_id, sample.touch_id), None)
        if touch is None:
            return None

        end = self._point(sample)
        end.is_active = False
        touch.last = end
        touch.state = TouchState.ENDED

        handled, gesture = self._multi.end(
            sample.session_id, sample.touch_id, end, self.thresholds, cancelled=cancelled
        )
        if not handled and not cancelled:
            gesture = classify_touch(touch.first, end, self.thresholds, sample.session_id)

        if gesture is not None:
            self._publish(gesture)
        return gesture

    def _observe_group(self, session_id: str):
        if not self.multi_touch_enabled:
            return
        self._multi.observe(session_id, self._active_points(session_id))

    def _active_points(self, session_id: str) -> dict[int, TouchPoint]:
        return {tid: t.last for (sid, tid), t in self._touches.items() if sid == session_id}

    def _record_sample(self, sample: TouchInput):
        self._touch_history.append(sample)
        if len(self._touch_history) > self.history_limit:
            self._touch_history = self._touch_history[len(self._touch_history) // 2:]

    def _publish(self, gesture: GestureEvent):
        self._gesture_history.append(gesture)
        if len(self._gesture_history) > self.history_limit:
            self._gesture_history = self._gesture_history[len(self._gesture_history) // 2:]

        if self.metrics is not None:
            self.metrics.record_gesture(gesture.type.value)
        logger.debug("Recognized %s (%d fingers) in %s", gesture.type.value, gesture.fingers, gesture.session_id)

        for cb in self._listeners:
            try:
                cb(gesture)
            except Exception as e:
                logger.error("Gesture listener error: %s", e)

    # --- Ingress consumer ---

    def handle_event(self, event: InputEvent):
        """Feed touch events from ingress into the state machine."""
        if event.type != EventType.TOUCH or "action" not in event.payload:
            return
        sample = TouchInput.from_payload(event.payload, event.session_id, event.timestamp)
        self.process(sample)

    # --- Simulation ---

    def simulate_touch(
        self,
        session_id: str,
        x: float,
        y: float,
        touch_id: int = 1,
        pressure: float = 0.5,
        timestamp: Optional[float] = None,
    ) -> TouchInput:
        sample = TouchInput(TouchAction.TOUCH, x, y, touch_id, pressure, timestamp, session_id)
        self.process(sample)
        return sample

    def simulate_move(
        self,
        session_id: str,
        x: float,
        y: float,
        touch_id: int = 1,
        pressure: float = 0.5,
        timestamp: Optional[float] = None,
    ) -> TouchInput:
        sample = TouchInput(TouchAction.MOVE, x, y, touch_id, pressure, timestamp, session_id)
        self.process(sample)
        return sample

    def simulate_release(
        self,
        session_id: str,
        x: float,
        y: float,
        touch_id: int = 1,
        timestamp: Optional[float] = None,
    ) -> Optional[GestureEvent]:
        return self.process(TouchInput(TouchAction.RELEASE, x, y, touch_id, 0.0, timestamp, session_id))

    def simulate_multi_touch(self, session_id: str, points: list[Mapping[str, Any]]) -> dict:
        """Touch and release each point in turn, touch ids numbered from 1."""
        if not points:
            raise EngineError(ErrorType.PARSING_ERROR, "Touch points must not be empty")

        events: list[TouchInput] = []
        gestures: list[GestureEvent] = []
        for index, p in enumerate(points):
            touch_id = index + 1
            ts = time.time()
            pressure = float(p.get("pressure", 0.5))
            events.append(self.simulate_touch(session_id, p["x"], p["y"], touch_id, pressure, ts))
            release = TouchInput(TouchAction.RELEASE, p["x"], p["y"], touch_id, 0.0, ts, session_id)
            gesture = self.process(release)
            events.append(release)
            if gesture is not None:
                gestures.append(gesture)

        return {"events": events, "gestures": gestures}

    # --- Queries ---

    def get_active_touches(self, session_id: Optional[str] = None) -> list[dict]:
        return [
            {**t.last.to_dict(), "session_id": sid, "state": t.state.value}
            for (sid, tid), t in sorted(self._touches.items())
            if session_id is None or sid == session_id
        ]

    def touch_state(self, session_id: str, touch_id: int) -> TouchState:
        touch = self._touches.get((session_id, touch_id))
        return touch.state if touch else TouchState.IDLE

    def check_payload(self, payload: Mapping[str, Any], session_id: Optional[str] = None) -> TouchInput:
        """Parse a touch payload ahead of queueing it.

        Raises PARSING_ERROR when malformed or when it puts down a touch id
        that is already active in the session.
        """
        sample = TouchInput.from_payload(payload, session_id)
        if sample.action == TouchAction.TOUCH and self.touch_state(sample.session_id, sample.touch_id) != TouchState.IDLE:
            raise EngineError(
                ErrorType.PARSING_ERROR,
                f"Touch {sample.touch_id} is already active in session {sample.session_id}",
                {"session_id": sample.session_id, "touch_id": sample.touch_id},
            )
        return sample

    def get_touch_history(self, limit: Optional[int] = None) -> list[TouchInput]:
        if limit is None:
            return list(self._touch_history)
        return self._touch_history[-limit:] if limit > 0 else []

    def get_gesture_history(self, limit: Optional[int] = None) -> list[GestureEvent]:
        if limit is None:
            return list(self._gesture_history)
        return self._gesture_history[-limit:] if limit > 0 else []

    def clear_state(self, session_id: Optional[str] = None):
        """Drop active touches (and, without a session, all history)."""
        if session_id is None:
            self._touches.clear()
            self._touch_history.clear()
            self._gesture_history.clear()
        else:
            for key in [k for k in self._touches if k[0] == session_id]:
                del self._touches[key]
        self._multi.clear(session_id)
