"""Event ingress: validation, sequencing, priority queue and dispatch.

Producers submit drafts; ingress assigns ids and sequence numbers, queues
them by priority tier, runs each dequeued event through the filter
pipeline and hands survivors to consumers in registration order.

Usage:
    ingress = InputIngress(FilterPipeline())
    ingress.subscribe(lambda event: print(event.type, event.payload))
    event_id = ingress.enqueue(EventDraft(type="keyboard", payload={"key": "a"}))
"""

from __future__ import annotations

import heapq
import logging
import time
from typing import Callable, Optional

from input_engine.errors import EngineError, ErrorType
from input_engine.events import EventDraft, InputEvent, new_id, validate_draft
from input_engine.filters import FilterPipeline, FilterResult
from input_engine.metrics import MetricsCollector

logger = logging.getLogger("input_engine.ingress")

Consumer = Callable[[InputEvent], None]


class InputIngress:
    """Priority-aware, filtered event queue.

    Dequeue order is strict by tier (critical > high > normal > low), then
    FIFO by sequence number within a tier.
    """

    def __init__(
        self,
        pipeline: Optional[FilterPipeline] = None,
        metrics: Optional[MetricsCollector] = None,
        history_limit: int = 1000,
        max_queue_size: int = 10000,
        auto_process: bool = True,
    ):
        if history_limit < 1 or max_queue_size < 1:
            raise EngineError(ErrorType.PARSING_ERROR, "Queue and history limits must be positive")
        self.pipeline = pipeline or FilterPipeline()
        self.metrics = metrics or MetricsCollector()
        self.history_limit = history_limit
        self.max_queue_size = max_queue_size

        self._queue: list[tuple[int, int, InputEvent]] = []
        self._history: list[InputEvent] = []
        self._consumers: list[Consumer] = []
        self._sequence = 0
        self._processing_enabled = auto_process
        self._dropped = 0
        self._optimized: set[str] = set()  # filter ids disabled by optimize_latency

    # --- Consumers ---

    def subscribe(self, consumer: Consumer):
        """Register a consumer; called for every event that survives the filters."""
        self._consumers.append(consumer)

    def unsubscribe(self, consumer: Consumer) -> bool:
        try:
            self._consumers.remove(consumer)
            return True
        except ValueError:
            return False

    # --- Queue ---

    def enqueue(self, draft: EventDraft) -> str:
        """Validate and queue an event. Returns the new event id."""
        event_type, priority, payload, timestamp = validate_draft(draft)

        self._sequence += 1
        event = InputEvent(
            id=new_id("input"),
            type=event_type,
            timestamp=timestamp,
            payload=payload,
            sequence=self._sequence,
            priority=priority,
            session_id=draft.session_id,
        )

        if len(self._queue) >= self.max_queue_size:
            self._evict_lowest()

        heapq.heappush(self._queue, (priority.rank, event.sequence, event))
        self.metrics.record_event(event_type.value)
        self.metrics.set_queue_size(len(self._queue))
        logger.debug("Queued %s event %s (seq %d)", event_type.value, event.id, event.sequence)

        if self._processing_enabled:
            self.drain()

        return event.id

    def _evict_lowest(self):
        """Drop the oldest event of the lowest queued priority tier."""
        victim = max(self._queue, key=lambda entry: (entry[0], -entry[1]))
        self._queue.remove(victim)
        heapq.heapify(self._queue)
        self._dropped += 1
        logger.warning("Ingress queue full, dropped event %s", victim[2].id)

    def dequeue(self) -> Optional[InputEvent]:
        if not self._queue:
            return None
        _, _, event = heapq.heappop(self._queue)
        self.metrics.set_queue_size(len(self._queue))
        return event

    def process_next(self) -> Optional[FilterResult]:
        """Dequeue one event, filter it and dispatch it. None when the queue is empty."""
        event = self.dequeue()
        if event is None:
            return None

        t_start = time.perf_counter()
        result = self.pipeline.apply(event)

        if result.event is None:
            self.metrics.record_filtered(result.dropped_by or "unknown", result.rate_limited)
        else:
            self._dispatch(result.event)
            self._add_to_history(result.event)

        self.metrics.record_latency(time.perf_counter() - t_start)
        return result

    def drain(self) -> int:
        """Process every queued event. Returns the number dispatched."""
        dispatched = 0
        while self._queue:
            result = self.process_next()
            if result is not None and result.event is not None:
                dispatched += 1
        return dispatched

    def _dispatch(self, event: InputEvent):
        for consumer in list(self._consumers):
            try:
                consumer(event)
            except Exception as e:
                self.metrics.record_dispatch_error()
                logger.error(
                    "Consumer %s failed on event %s: %s",
                    getattr(consumer, "__qualname__", consumer), event.id, e,
                )

    def _add_to_history(self, event: InputEvent):
        self._history.append(event)
        if len(self._history) > self.history_limit:
            # Evict the oldest half in one batch
            self._history = self._history[len(self._history) // 2:]

    def get_queue_size(self) -> int:
        return len(self._queue)

    def get_event_history(self, limit: Optional[int] = None) -> list[InputEvent]:
        """Most recent processed events, oldest first."""
        if limit is None:
            return list(self._history)
        if limit <= 0:
            return []
        return self._history[-limit:]

    def clear_queue(self) -> int:
        cleared = len(self._queue)
        self._queue.clear()
        self.metrics.set_queue_size(0)
        return cleared

    def clear_history(self):
        self._history.clear()

    def set_processing_enabled(self, enabled: bool):
        """Toggle automatic draining after each enqueue."""
        self._processing_enabled = enabled
        if enabled:
            self.drain()

    @property
    def processing_enabled(self) -> bool:
        return self._processing_enabled

    @property
    def dropped_count(self) -> int:
        """Events evicted from a full queue."""
        return self._dropped

    # --- Analytics / latency mode ---

    def get_analytics(self) -> dict:
        analytics = self.metrics.analytics()
        analytics.update({
            "queue_size": len(self._queue),
            "history_size": len(self._history),
            "dropped_events": self._dropped,
            "active_filters": sum(1 for f in self.pipeline.list_filters() if f.enabled),
            "optimized": bool(self._optimized),
        })
        return analytics

    def optimize_latency(self) -> list[str]:
        """Drain now, trim history and disable every non-protected filter.

        Returns the ids of the filters that were disabled.
        """
        self.drain()
        if len(self._history) > self.history_limit:
            self._history = self._history[-self.history_limit:]

        for f in self.pipeline.list_filters():
            if f.enabled and not f.protected:
                f.enabled = False
                self._optimized.add(f.id)
        logger.info("Latency optimization on, disabled %d filters", len(self._optimized))
        return sorted(self._optimized)

    def reset_optimizations(self) -> list[str]:
        """Re-enable the filters optimize_latency disabled."""
        restored = []
        for filter_id in sorted(self._optimized):
            if self.pipeline.set_enabled(filter_id, True):
                restored.append(filter_id)
        self._optimized.clear()
        logger.info("Latency optimization off, restored %d filters", len(restored))
        return restored
