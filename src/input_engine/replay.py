"""Timed replay of sealed recordings.

Each replay runs as a detached asyncio task. Recorded events are re-emitted
through ingress, redirected to the target session, at
``(timestamp - first_timestamp) / speed`` after the replay starts. Keyboard
events that survive the filter pipeline are also written to the terminal as
synthesized bytes.

Outcomes never propagate to the caller; they land on the ``ReplayHandle``:

    handle = replays.replay(rec.id, "s2", speed=2.0)
    status = await handle.wait()
    if status is ReplayStatus.FAILED:
        print(handle.error.message)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from input_engine.errors import EngineError, ErrorType, handle_error
from input_engine.events import EventDraft, EventType, InputEvent, new_id
from input_engine.ingress import InputIngress
from input_engine.metrics import MetricsCollector
from input_engine.recorder import RecordingManager
from input_engine.services import SessionDirectory, TerminalIOProvider, keyboard_bytes, require_session

logger = logging.getLogger("input_engine.replay")

MIN_SPEED = 0.1
MAX_SPEED = 10.0


class ReplayStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def finished(self) -> bool:
        return self in (ReplayStatus.COMPLETED, ReplayStatus.FAILED, ReplayStatus.CANCELLED)


@dataclass
class ReplayHandle:
    """Observable state of one in-flight or finished replay."""
    id: str
    recording_id: str
    target_session_id: str
    speed: float
    schedule: list[float]  # emit offsets in seconds from replay start
    status: ReplayStatus = ReplayStatus.PENDING
    events_emitted: int = 0
    error: Optional[EngineError] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    _task: Optional[asyncio.Task] = field(default=None, repr=False)
    _listeners: list[Callable[[ReplayHandle], None]] = field(default_factory=list, repr=False)

    def add_listener(self, callback: Callable[[ReplayHandle], None]):
        """Called once when the replay finishes (completed, failed or cancelled)."""
        if self.status.finished:
            callback(self)
        else:
            self._listeners.append(callback)

    async def wait(self, timeout: Optional[float] = None) -> ReplayStatus:
        """Wait for the replay to finish and return its final status."""
        if self._task is not None and not self._task.done():
            done, _ = await asyncio.wait({self._task}, timeout=timeout)
            if not done:
                raise EngineError(
                    ErrorType.TIMEOUT_ERROR,
                    f"Replay {self.id} still running after {timeout}s",
                )
        if self._task is not None and self._task.cancelled() and not self.status.finished:
            self.status = ReplayStatus.CANCELLED
        return self.status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recording_id": self.recording_id,
            "target_session_id": self.target_session_id,
            "speed": self.speed,
            "status": self.status.value,
            "events_emitted": self.events_emitted,
            "total_events": len(self.schedule),
            "schedule": [round(s, 6) for s in self.schedule],
            "error": self.error.to_dict() if self.error else None,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


def clamp_speed(speed: float) -> float:
    return min(MAX_SPEED, max(MIN_SPEED, float(speed)))


class ReplayEngine:
    """Schedules and tracks replays."""

    def __init__(
        self,
        ingress: InputIngress,
        recordings: RecordingManager,
        sessions: SessionDirectory,
        terminal: TerminalIOProvider,
        metrics: Optional[MetricsCollector] = None,
        history_limit: int = 100,
    ):
        if history_limit < 1:
            raise EngineError(ErrorType.PARSING_ERROR, "Replay history limit must be positive")
        self._ingress = ingress
        self._recordings = recordings
        self._sessions = sessions
        self._terminal = terminal
        self._metrics = metrics
        self.history_limit = history_limit
        self._replays: dict[str, ReplayHandle] = {}

    def replay(self, recording_id: str, target_session_id: str, speed: float = 1.0) -> ReplayHandle:
        """Start replaying a sealed recording. Must be called from a running event loop."""
        recording = self._recordings.require(recording_id)
        if not recording.is_sealed:
            raise EngineError(
                ErrorType.RESOURCE_ERROR,
                f"Recording {recording_id} is still open; stop it before replaying",
            )
        require_session(self._sessions, target_session_id)

        speed = clamp_speed(speed)
        events = [r.event for r in recording.events]
        first_ts = events[0].timestamp if events else 0.0
        schedule = [max(0.0, (e.timestamp - first_ts) / speed) for e in events]

        handle = ReplayHandle(
            id=new_id("replay"),
            recording_id=recording_id,
            target_session_id=target_session_id,
            speed=speed,
            schedule=schedule,
        )
        self._replays[handle.id] = handle
        if len(self._replays) > self.history_limit:
            self._evict_finished()

        loop = asyncio.get_running_loop()
        handle._task = loop.create_task(self._run(handle, events))
        handle._task.add_done_callback(lambda _task: self._finish(handle))
        logger.info(
            "Replay %s: recording %s -> session %s, %d events at %.1fx",
            handle.id, recording_id, target_session_id, len(events), speed,
        )
        return handle

    async def _run(self, handle: ReplayHandle, events: list):
        handle.status = ReplayStatus.RUNNING
        handle.started_at = time.time()
        start = time.monotonic()

        # Keyboard events for the target that made it through the filters
        delivered: dict[str, InputEvent] = {}

        def capture(event: InputEvent):
            if event.type == EventType.KEYBOARD and event.session_id == handle.target_session_id:
                delivered[event.id] = event

        self._ingress.subscribe(capture)
        try:
            for offset, event in zip(handle.schedule, events):
                delay = start + offset - time.monotonic()
                if delay > 0:
                    await asyncio.sleep(delay)

                event_id = self._ingress.enqueue(EventDraft(
                    type=event.type,
                    payload=event.payload,
                    priority=event.priority,
                    session_id=handle.target_session_id,
                ))
                survivor = delivered.pop(event_id, None)
                delivered.clear()
                if survivor is not None:
                    data = keyboard_bytes(survivor.payload)
                    if data:
                        await self._terminal.send_synthesized_input(handle.target_session_id, data)
                handle.events_emitted += 1

            handle.status = ReplayStatus.COMPLETED
        except asyncio.CancelledError:
            handle.status = ReplayStatus.CANCELLED
            raise
        except Exception as e:
            handle.status = ReplayStatus.FAILED
            handle.error = handle_error(e, f"Replay {handle.id} failed")
            logger.error("Replay %s failed after %d events: %s", handle.id, handle.events_emitted, e)
        finally:
            self._ingress.unsubscribe(capture)

    def _finish(self, handle: ReplayHandle):
        if not handle.status.finished:
            # Cancelled before the task ever ran
            handle.status = ReplayStatus.CANCELLED
        handle.finished_at = time.time()
        if self._metrics is not None:
            self._metrics.record_replay(handle.status.value)

        listeners, handle._listeners = handle._listeners, []
        for cb in listeners:
            try:
                cb(handle)
            except Exception as e:
                logger.error("Replay listener error: %s", e)

    def _evict_finished(self):
        """Drop the oldest half of finished replays in one batch."""
        finished = [rid for rid, h in self._replays.items() if h.status.finished]
        for rid in finished[:max(1, len(finished) // 2)]:
            del self._replays[rid]

    def get_status(self, replay_id: str) -> Optional[ReplayHandle]:
        return self._replays.get(replay_id)

    def require(self, replay_id: str) -> ReplayHandle:
        handle = self._replays.get(replay_id)
        if handle is None:
            raise EngineError(ErrorType.RESOURCE_ERROR, f"Replay {replay_id} not found")
        return handle

    def list_replays(self) -> list[ReplayHandle]:
        return list(self._replays.values())

    def cancel(self, replay_id: str) -> bool:
        """Cancel an in-flight replay. False if it already finished."""
        handle = self.require(replay_id)
        if handle.status.finished or handle._task is None:
            return False
        handle._task.cancel()
        logger.info("Replay %s cancelled", replay_id)
        return True

    def clear(self) -> int:
        """Cancel every in-flight replay. Returns how many were cancelled."""
        cancelled = 0
        for handle in self._replays.values():
            if handle._task is not None and not handle._task.done():
                handle._task.cancel()
                cancelled += 1
        return cancelled
