"""Multi-touch grouping: pinch and multi-finger detection.

While two or more touches are down in a session they form a group. The
distance between the two lowest touch ids is sampled on every touch and
move. When the first member lifts, the group is classified once:

- pinch: the sampled distance changed by at least ``pinch_min_distance``
  (``open`` when it grew, ``close`` when it shrank)
- multi_finger: anything else

The remaining members then end silently.

Usage:
    tracker = MultiTouchTracker()
    tracker.observe("s1", active_points)                # after each touch/move
    handled, gesture = tracker.end("s1", touch_id, point, thresholds, cancelled=False)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from input_engine.gestures import GestureEvent, GestureThresholds, GestureType, TouchPoint


@dataclass
class _Group:
    """An open or classified multi-touch group for one session."""
    members: set[int]
    first_points: dict[int, TouchPoint]
    last_points: dict[int, TouchPoint]
    started_at: float
    start_centroid: np.ndarray
    distances: list[float] = field(default_factory=list)
    peak: int = 0
    closed: bool = False  # classified; remaining members end silently


def _centroid(points: list[TouchPoint]) -> np.ndarray:
    return np.mean([p.position for p in points], axis=0)


class MultiTouchTracker:
    """Tracks multi-touch groups per session."""

    def __init__(self):
        self._groups: dict[str, _Group] = {}

    def observe(self, session_id: str, active: dict[int, TouchPoint]):
        """Update the session's group from the currently active touches."""
        group = self._groups.get(session_id)

        if group is not None and group.closed:
            # Touches that start after classification do not join the old group
            return

        if group is None:
            if len(active) < 2:
                return
            points = list(active.values())
            group = _Group(
                members=set(active),
                first_points=dict(active),
                last_points=dict(active),
                started_at=min(p.timestamp for p in points),
                start_centroid=_centroid(points),
            )
            self._groups[session_id] = group

        for touch_id, point in active.items():
            if touch_id not in group.members:
                group.members.add(touch_id)
                group.first_points[touch_id] = point
            group.last_points[touch_id] = point

        live = [tid for tid in group.members if tid in active]
        group.peak = max(group.peak, len(live))
        if len(live) >= 2:
            a, b = sorted(live)[:2]
            group.distances.append(float(np.linalg.norm(active[a].position - active[b].position)))

    def is_member(self, session_id: str, touch_id: int) -> bool:
        group = self._groups.get(session_id)
        return group is not None and touch_id in group.members

    def end(
        self,
        session_id: str,
        touch_id: int,
        point: TouchPoint,
        thresholds: GestureThresholds,
        cancelled: bool = False,
    ) -> tuple[bool, Optional[GestureEvent]]:
        """Handle a group member lifting.

        Returns (handled, gesture). ``handled`` is False when the touch is not
        part of a group and should be classified on its own.
        """
        group = self._groups.get(session_id)
        if group is None or touch_id not in group.members:
            return False, None

        group.last_points[touch_id] = point
        gesture = None
        if not group.closed:
            group.closed = True
            if not cancelled:
                gesture = self._classify(group, point, thresholds, session_id)

        group.members.discard(touch_id)
        if not group.members:
            del self._groups[session_id]
        return True, gesture

    def _classify(
        self,
        group: _Group,
        lifted: TouchPoint,
        thresholds: GestureThresholds,
        session_id: str,
    ) -> GestureEvent:
        ids = sorted(group.first_points)
        anchor = ids[0]
        duration = max(0.0, lifted.timestamp - group.started_at)

        samples = np.asarray(group.distances or [0.0], dtype=np.float64)
        first, last = float(samples[0]), float(samples[-1])
        delta = last - first

        if abs(delta) >= thresholds.pinch_min_distance:
            gesture_type = GestureType.PINCH
            direction = "open" if delta > 0 else "close"
            scale = last / first if first > 0 else None
            moved = abs(delta)
            confidence = round(min(1.0, max(0.5, 0.5 * abs(delta) / thresholds.pinch_min_distance)), 3)
        else:
            gesture_type = GestureType.MULTI_FINGER
            direction = None
            scale = None
            end_centroid = _centroid(list(group.last_points.values()))
            moved = float(np.linalg.norm(end_centroid - group.start_centroid))
            confidence = round(max(0.5, 1.0 - 0.5 * abs(delta) / thresholds.pinch_min_distance), 3)

        return GestureEvent(
            type=gesture_type,
            fingers=max(group.peak, 2),
            start=group.first_points[anchor],
            end=group.last_points[anchor],
            duration=duration,
            distance=moved,
            confidence=confidence,
            direction=direction,
            velocity=moved / duration if duration > 0 else 0.0,
            scale=scale,
            session_id=session_id,
            touch_ids=ids,
            timestamp=lifted.timestamp,
        )

    def clear(self, session_id: Optional[str] = None):
        if session_id is None:
            self._groups.clear()
        else:
            self._groups.pop(session_id, None)

    def active_groups(self) -> dict[str, list[int]]:
        return {sid: sorted(g.members) for sid, g in self._groups.items()}
