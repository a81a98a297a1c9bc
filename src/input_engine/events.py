"""Shared typed-event representation used by every other component."""

from __future__ import annotations

import copy
import json
import math
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from input_engine.errors import EngineError, ErrorType


class EventType(Enum):
    KEYBOARD = "keyboard"
    MOUSE = "mouse"
    TOUCH = "touch"
    GESTURE = "gesture"
    VOICE = "voice"
    EYE_TRACKING = "eye_tracking"


class Priority(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Dequeue rank: lower drains first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.NORMAL: 2,
    Priority.LOW: 3,
}


def new_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class InputEvent:
    """An input event as stored by the ingress queue.

    Frozen: filters that rewrite a payload produce a new event with
    ``dataclasses.replace`` instead of mutating this one.
    """
    id: str
    type: EventType
    timestamp: float
    payload: Mapping[str, Any]
    sequence: int
    priority: Priority = Priority.NORMAL
    session_id: Optional[str] = None

    def serialized_payload(self) -> str:
        """Canonical JSON of the payload; what pattern conditions match against."""
        return canonical_json(self.payload)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "priority": self.priority.value,
            "payload": thaw(self.payload),
            "sequence": self.sequence,
            "session_id": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> InputEvent:
        return cls(
            id=data["id"],
            type=EventType(data["type"]),
            timestamp=float(data["timestamp"]),
            payload=freeze(data.get("payload", {})),
            sequence=int(data.get("sequence", 0)),
            priority=Priority(data.get("priority", "normal")),
            session_id=data.get("session_id"),
        )


@dataclass
class EventDraft:
    """What producers submit; ingress validates it and assigns id + sequence."""
    type: Any
    payload: Any
    priority: Any = Priority.NORMAL
    timestamp: Optional[float] = None
    session_id: Optional[str] = None


def validate_draft(draft: EventDraft) -> tuple[EventType, Priority, Mapping[str, Any], float]:
    """Check a draft and return its normalized parts.

    Raises EngineError(PARSING_ERROR) on any malformed field.
    """
    try:
        event_type = draft.type if isinstance(draft.type, EventType) else EventType(draft.type)
    except ValueError:
        raise EngineError(
            ErrorType.PARSING_ERROR,
            f"Unknown event type: {draft.type!r}",
            {"allowed": [t.value for t in EventType]},
        ) from None

    try:
        priority = draft.priority if isinstance(draft.priority, Priority) else Priority(draft.priority or "normal")
    except ValueError:
        raise EngineError(
            ErrorType.PARSING_ERROR,
            f"Unknown priority: {draft.priority!r}",
            {"allowed": [p.value for p in Priority]},
        ) from None

    if not isinstance(draft.payload, Mapping):
        raise EngineError(
            ErrorType.PARSING_ERROR,
            "Event payload must be a structured object",
            {"received": type(draft.payload).__name__},
        )
    try:
        canonical_json(draft.payload)
    except (TypeError, ValueError) as e:
        raise EngineError(
            ErrorType.PARSING_ERROR,
            f"Event payload is not serializable: {e}",
        ) from None

    timestamp = draft.timestamp if draft.timestamp is not None else time.time()
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not math.isfinite(timestamp):
        raise EngineError(ErrorType.PARSING_ERROR, f"Invalid event timestamp: {timestamp!r}")

    return event_type, priority, freeze(draft.payload), float(timestamp)


def canonical_json(value: Any) -> str:
    return json.dumps(thaw(value), sort_keys=True, separators=(", ", ": "), allow_nan=False)


def freeze(value: Any) -> Any:
    """Deep-copy a JSON-like value into read-only mappings and tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return copy.copy(value)


def thaw(value: Any) -> Any:
    """Inverse of freeze: plain dicts and lists, safe to serialize or edit."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    return value
