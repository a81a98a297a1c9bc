"""InputEngine: wires ingress, filters, recognizer, recording, replay and snapshots.

One explicit object per process (or per test); nothing here is global.

Usage:
    engine = InputEngine(load_config())
    engine.sessions.create("s1")
    engine.ingress.enqueue(EventDraft(type="touch", session_id="s1",
                                      payload={"action": "touch", "x": 10, "y": 10, "touch_id": 1}))
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from input_engine.config import EngineConfig
from input_engine.filters import FilterPipeline, InputFilter, default_filters
from input_engine.ingress import InputIngress
from input_engine.metrics import MetricsCollector
from input_engine.recognizer import GestureRecognizer
from input_engine.recorder import RecordingManager
from input_engine.replay import ReplayEngine
from input_engine.sequences import SequenceAnalyzer
from input_engine.services import (
    InMemorySessionDirectory,
    InMemoryTerminal,
    SessionDirectory,
    TerminalIOProvider,
)
from input_engine.snapshots import SnapshotStore

logger = logging.getLogger("input_engine.engine")


class InputEngine:
    """All input-processing components sharing one metrics collector."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        sessions: Optional[SessionDirectory] = None,
        terminal: Optional[TerminalIOProvider] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or EngineConfig()
        self.sessions = sessions if sessions is not None else InMemorySessionDirectory()
        self.terminal = terminal if terminal is not None else InMemoryTerminal()
        self.metrics = MetricsCollector()

        self.filters = FilterPipeline(clock=clock)
        if self.config.default_filters:
            for f in default_filters():
                self.filters.add_filter(f)
        for entry in self.config.filters:
            self.filters.add_filter(InputFilter.from_dict(entry))

        self.ingress = InputIngress(
            self.filters,
            self.metrics,
            history_limit=self.config.history_limit,
            max_queue_size=self.config.max_queue_size,
            auto_process=self.config.auto_process,
        )

        touch = self.config.touch
        self.recognizer = GestureRecognizer(
            thresholds=touch.build_thresholds(),
            metrics=self.metrics,
            palm_rejection=touch.palm_rejection,
            palm_pressure_threshold=touch.palm_pressure_threshold,
            multi_touch_enabled=touch.multi_touch_enabled,
            history_limit=self.config.history_limit,
        )
        self.recordings = RecordingManager(self.sessions, buffer_limit=self.config.recording_buffer_limit)
        self.replays = ReplayEngine(
            self.ingress, self.recordings, self.sessions, self.terminal, self.metrics,
            history_limit=self.config.replay_history_limit,
        )
        self.snapshots = SnapshotStore(self.sessions, self.terminal)

        # Dispatch order: gestures first, then the recording tap
        self.ingress.subscribe(self.recognizer.handle_event)
        self.ingress.subscribe(self.recordings.handle_event)

        logger.info(
            "InputEngine ready: %d filters, history %d, queue %d",
            len(self.filters), self.config.history_limit, self.config.max_queue_size,
        )

    def sequence_analyzer(self) -> SequenceAnalyzer:
        """Analyzer using the recognizer's current thresholds."""
        return SequenceAnalyzer(thresholds=self.recognizer.thresholds)

    def status(self) -> dict:
        return {
            "queue_size": self.ingress.get_queue_size(),
            "processing_enabled": self.ingress.processing_enabled,
            "filters": len(self.filters),
            "active_touches": len(self.recognizer.get_active_touches()),
            "recordings": len(self.recordings.list_recordings()),
            "active_recordings": len(self.recordings.list_active_recordings()),
            "replays": {h.id: h.status.value for h in self.replays.list_replays()},
            "snapshots": len(self.snapshots.list_snapshots()),
            "diffs": len(self.snapshots.list_diffs()),
            "events": self.metrics.event_counts,
            "gestures": self.metrics.gesture_counts,
        }

    async def shutdown(self):
        """Cancel in-flight replays and wait for them to settle."""
        pending = [h for h in self.replays.list_replays() if not h.status.finished]
        self.replays.clear()
        if pending:
            await asyncio.gather(*(h.wait() for h in pending))
        logger.info("InputEngine shut down (%d replays cancelled)", len(pending))
