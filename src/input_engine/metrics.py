"""Prometheus-compatible metrics and input analytics.

Generates the text exposition format directly.

Tracked metrics:
- input_engine_events_total (counter, by event type)
- input_engine_events_filtered_total (counter, by filter id)
- input_engine_events_rate_limited_total (counter)
- input_engine_dispatch_errors_total (counter)
- input_engine_gestures_total (counter, by gesture type)
- input_engine_replays_total (counter, by outcome)
- input_engine_processing_latency_seconds (histogram)
- input_engine_queue_size (gauge)
"""

from __future__ import annotations

import time
import threading
from collections import Counter


class _Histogram:
    """Simple histogram with configurable buckets."""

    def __init__(self, buckets: list[float]):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0
        self.peak = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float):
        with self._lock:
            self.count += 1
            self.sum += value
            self.peak = max(self.peak, value)
            for i, b in enumerate(self.buckets):
                if value <= b:
                    self.bucket_counts[i] += 1
                    break

    @property
    def average(self) -> float:
        return self.sum / self.count if self.count else 0.0

    def render(self, name: str, help_text: str) -> str:
        lines = [
            f"# HELP {name} {help_text}",
            f"# TYPE {name} histogram",
        ]
        with self._lock:
            cumulative = 0
            for i, b in enumerate(self.buckets):
                cumulative += self.bucket_counts[i]
                lines.append(f'{name}_bucket{{le="{b}"}} {cumulative}')
            lines.append(f'{name}_bucket{{le="+Inf"}} {self.count}')
            lines.append(f"{name}_sum {self.sum:.6f}")
            lines.append(f"{name}_count {self.count}")
        return "\n".join(lines)


class MetricsCollector:
    """Collects input-processing counters for analytics and the /metrics endpoint."""

    def __init__(self):
        self._event_counts: Counter = Counter()
        self._filter_drops: Counter = Counter()
        self._gesture_counts: Counter = Counter()
        self._replay_outcomes: Counter = Counter()
        self._rate_limited = 0
        self._dispatch_errors = 0
        self._queue_size = 0
        self._lock = threading.Lock()

        # Processing latency: 10us to 50ms
        self._latency = _Histogram(
            [0.00001, 0.0001, 0.0005, 0.001, 0.005, 0.010, 0.050]
        )

        self._start_time = time.time()

    def record_event(self, event_type: str):
        with self._lock:
            self._event_counts[event_type] += 1

    def record_filtered(self, filter_id: str, rate_limited: bool = False):
        with self._lock:
            self._filter_drops[filter_id] += 1
            if rate_limited:
                self._rate_limited += 1

    def record_dispatch_error(self):
        with self._lock:
            self._dispatch_errors += 1

    def record_gesture(self, gesture_type: str):
        with self._lock:
            self._gesture_counts[gesture_type] += 1

    def record_replay(self, outcome: str):
        with self._lock:
            self._replay_outcomes[outcome] += 1

    def record_latency(self, seconds: float):
        self._latency.observe(seconds)

    def set_queue_size(self, size: int):
        self._queue_size = size

    def analytics(self) -> dict:
        """Summary used by the get_input_analytics operation."""
        with self._lock:
            total = sum(self._event_counts.values())
            return {
                "total_events": total,
                "events_by_type": dict(self._event_counts),
                "filtered_events": sum(self._filter_drops.values()),
                "filtered_by": dict(self._filter_drops),
                "rate_limited_events": self._rate_limited,
                "dispatch_errors": self._dispatch_errors,
                "error_rate": self._dispatch_errors / total if total else 0.0,
                "average_latency_ms": self._latency.average * 1000,
                "peak_latency_ms": self._latency.peak * 1000,
                "gestures": dict(self._gesture_counts),
                "replays": dict(self._replay_outcomes),
                "session_duration": time.time() - self._start_time,
            }

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        lines: list[str] = []

        uptime = time.time() - self._start_time
        lines.append("# HELP input_engine_uptime_seconds Time since engine start")
        lines.append("# TYPE input_engine_uptime_seconds gauge")
        lines.append(f"input_engine_uptime_seconds {uptime:.1f}")
        lines.append("")

        lines.append("# HELP input_engine_events_total Events processed by type")
        lines.append("# TYPE input_engine_events_total counter")
        with self._lock:
            for name, count in sorted(self._event_counts.items()):
                lines.append(f'input_engine_events_total{{type="{name}"}} {count}')
        lines.append("")

        lines.append("# HELP input_engine_events_filtered_total Events dropped by filter")
        lines.append("# TYPE input_engine_events_filtered_total counter")
        with self._lock:
            for name, count in sorted(self._filter_drops.items()):
                lines.append(f'input_engine_events_filtered_total{{filter="{name}"}} {count}')
        lines.append("")

        lines.append("# HELP input_engine_events_rate_limited_total Events dropped by rate limits")
        lines.append("# TYPE input_engine_events_rate_limited_total counter")
        lines.append(f"input_engine_events_rate_limited_total {self._rate_limited}")
        lines.append("")

        lines.append("# HELP input_engine_dispatch_errors_total Consumer failures during dispatch")
        lines.append("# TYPE input_engine_dispatch_errors_total counter")
        lines.append(f"input_engine_dispatch_errors_total {self._dispatch_errors}")
        lines.append("")

        lines.append("# HELP input_engine_gestures_total Recognized gestures by type")
        lines.append("# TYPE input_engine_gestures_total counter")
        with self._lock:
            for name, count in sorted(self._gesture_counts.items()):
                lines.append(f'input_engine_gestures_total{{gesture="{name}"}} {count}')
        lines.append("")

        lines.append("# HELP input_engine_replays_total Finished replays by outcome")
        lines.append("# TYPE input_engine_replays_total counter")
        with self._lock:
            for name, count in sorted(self._replay_outcomes.items()):
                lines.append(f'input_engine_replays_total{{outcome="{name}"}} {count}')
        lines.append("")

        lines.append(self._latency.render(
            "input_engine_processing_latency_seconds",
            "Per-event filter and dispatch latency in seconds",
        ))
        lines.append("")

        lines.append("# HELP input_engine_queue_size Events waiting in the ingress queue")
        lines.append("# TYPE input_engine_queue_size gauge")
        lines.append(f"input_engine_queue_size {self._queue_size}")
        lines.append("")

        return "\n".join(lines) + "\n"

    @property
    def gesture_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._gesture_counts)

    @property
    def event_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._event_counts)
