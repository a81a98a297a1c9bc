"""Interaction recording: capture dispatched events per session.

The manager is an ingress consumer. While a session has an open recording
every event dispatched for that session is appended with its original
timestamp. Stopping seals the recording; sealed recordings can be replayed,
saved to JSON and loaded back.

Usage:
    recordings = RecordingManager(sessions)
    ingress.subscribe(recordings.handle_event)
    rec = recordings.start_recording("s1", name="login flow")
    # ... events flow through ingress ...
    recordings.stop_recording(rec.id)
    recordings.save(rec.id, "login.json")
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from input_engine.errors import EngineError, ErrorType
from input_engine.events import InputEvent, new_id
from input_engine.services import SessionDirectory, require_session

logger = logging.getLogger("input_engine.recorder")

FORMAT_VERSION = 1


@dataclass(frozen=True)
class RecordedEvent:
    event: InputEvent
    offset: float  # seconds from recording start

    def to_dict(self) -> dict:
        return {"offset": self.offset, "event": self.event.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> RecordedEvent:
        return cls(event=InputEvent.from_dict(data["event"]), offset=float(data["offset"]))


@dataclass
class Recording:
    """An ordered capture of one session's events. Mutable only while open."""
    id: str
    session_id: str
    name: str = ""
    description: str = ""
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    events: list[RecordedEvent] = field(default_factory=list)
    evicted: int = 0

    @property
    def is_sealed(self) -> bool:
        return self.end_time is not None

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def total_duration(self) -> float:
        """Time between the first and last recorded event."""
        if len(self.events) < 2:
            return 0.0
        return self.events[-1].event.timestamp - self.events[0].event.timestamp

    def summary(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "description": self.description,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "event_count": self.event_count,
            "total_duration": self.total_duration,
            "sealed": self.is_sealed,
        }

    def to_dict(self) -> dict:
        return {
            "version": FORMAT_VERSION,
            **self.summary(),
            "evicted": self.evicted,
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Recording:
        version = data.get("version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise EngineError(ErrorType.PARSING_ERROR, f"Unsupported recording version: {version}")
        try:
            return cls(
                id=data["id"],
                session_id=data["session_id"],
                name=data.get("name", ""),
                description=data.get("description", ""),
                start_time=float(data["start_time"]),
                end_time=data.get("end_time"),
                events=[RecordedEvent.from_dict(e) for e in data.get("events", [])],
                evicted=data.get("evicted", 0),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise EngineError(ErrorType.PARSING_ERROR, f"Malformed recording: {e}") from None


class RecordingManager:
    """Owns recordings; at most one open recording per session."""

    def __init__(self, sessions: SessionDirectory, buffer_limit: int = 10000):
        self._sessions = sessions
        self.buffer_limit = buffer_limit
        self._recordings: dict[str, Recording] = {}
        self._open: dict[str, str] = {}  # session_id -> open recording id

    def start_recording(self, session_id: str, name: str = "", description: str = "") -> Recording:
        require_session(self._sessions, session_id)
        if session_id in self._open:
            raise EngineError(
                ErrorType.RESOURCE_ERROR,
                f"Session {session_id} is already being recorded",
                {"recording_id": self._open[session_id]},
            )

        recording = Recording(
            id=new_id("rec"),
            session_id=session_id,
            name=name or f"Recording {len(self._recordings) + 1}",
            description=description,
        )
        self._recordings[recording.id] = recording
        self._open[session_id] = recording.id
        logger.info("Recording %s started for session %s", recording.id, session_id)
        return recording

    def stop_recording(self, recording_id: str) -> Recording:
        recording = self._recordings.get(recording_id)
        if recording is None:
            raise EngineError(ErrorType.RESOURCE_ERROR, f"Recording {recording_id} not found")
        if recording.is_sealed:
            raise EngineError(ErrorType.RESOURCE_ERROR, f"Recording {recording_id} is already stopped")

        recording.end_time = time.time()
        self._open.pop(recording.session_id, None)
        logger.info(
            "Recording %s stopped: %d events, %.3fs",
            recording_id, recording.event_count, recording.total_duration,
        )
        return recording

    def handle_event(self, event: InputEvent):
        """Ingress consumer: append the event to its session's open recording."""
        if event.session_id is None:
            return
        recording_id = self._open.get(event.session_id)
        if recording_id is None:
            return

        recording = self._recordings[recording_id]
        recording.events.append(RecordedEvent(event=event, offset=event.timestamp - recording.start_time))
        if len(recording.events) > self.buffer_limit:
            dropped = len(recording.events) // 2
            recording.events = recording.events[dropped:]
            recording.evicted += dropped
            logger.warning("Recording %s over buffer limit, evicted %d events", recording_id, dropped)

    def get_recording(self, recording_id: str) -> Optional[Recording]:
        return self._recordings.get(recording_id)

    def require(self, recording_id: str) -> Recording:
        recording = self._recordings.get(recording_id)
        if recording is None:
            raise EngineError(ErrorType.RESOURCE_ERROR, f"Recording {recording_id} not found")
        return recording

    def list_recordings(self, session_id: Optional[str] = None) -> list[Recording]:
        recs = [r for r in self._recordings.values() if session_id is None or r.session_id == session_id]
        return sorted(recs, key=lambda r: r.start_time)

    def list_active_recordings(self) -> list[Recording]:
        return [self._recordings[rid] for rid in self._open.values()]

    def delete_recording(self, recording_id: str) -> bool:
        recording = self._recordings.pop(recording_id, None)
        if recording is None:
            return False
        if self._open.get(recording.session_id) == recording_id:
            del self._open[recording.session_id]
        return True

    def save(self, recording_id: str, path: str | Path) -> Path:
        """Write a sealed recording to JSON."""
        recording = self.require(recording_id)
        if not recording.is_sealed:
            raise EngineError(ErrorType.RESOURCE_ERROR, f"Recording {recording_id} is still open")

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(recording.to_dict(), f)
        return path

    def load(self, path: str | Path) -> Recording:
        """Load a recording from JSON and register it (sealed)."""
        recording = load_recording(path)
        if recording.end_time is None:
            recording.end_time = time.time()
        self._recordings[recording.id] = recording
        return recording


def load_recording(path: str | Path) -> Recording:
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise EngineError(ErrorType.PARSING_ERROR, f"Recording file {path} is not valid JSON: {e}") from None
    return Recording.from_dict(data)
