"""
In-process metrics for Parallax.

Counters for events (generation calls, failed tasks, malformed stream lines),
gauges for current state (live workers, last run's efficiency ratio) and
latency summaries for generation calls and tasks. Summaries keep running
totals plus a window of the most recent observations, from which the median
and 95th percentile are reported. Nothing leaves the process; the CLI prints
``metrics.snapshot()`` with ``analyze --json``.

Usage:
    from parallax.metrics import metrics

    metrics.inc("generation.calls")
    metrics.set_gauge("pool.workers", 5)
    metrics.observe("generation.latency_seconds", 1.23)
"""

from __future__ import annotations

import math
import threading
from collections import deque
from typing import Any

RECENT_WINDOW = 256


class _LatencySummary:
    """Totals over every observation, percentiles over the recent window."""

    __slots__ = ("count", "total", "peak", "recent")

    def __init__(self, window: int = RECENT_WINDOW) -> None:
        self.count = 0
        self.total = 0.0
        self.peak = 0.0
        self.recent: deque[float] = deque(maxlen=window)

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.peak = max(self.peak, value)
        self.recent.append(value)

    def percentile(self, q: float) -> float:
        # nearest-rank
        if not self.recent:
            return 0.0
        ordered = sorted(self.recent)
        rank = max(1, math.ceil(q * len(ordered)))
        return ordered[rank - 1]

    def as_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "sum": round(self.total, 4),
            "avg": round(self.total / self.count, 4) if self.count else 0.0,
            "max": round(self.peak, 4),
            "p50": round(self.percentile(0.5), 4),
            "p95": round(self.percentile(0.95), 4),
        }


class MetricsRegistry:
    """Named counters, gauges and latency summaries behind one lock."""

    def __init__(self, window: int = RECENT_WINDOW) -> None:
        self._lock = threading.Lock()
        self._window = window
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}
        self._latencies: dict[str, _LatencySummary] = {}

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = value

    def gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def observe(self, name: str, seconds: float) -> None:
        with self._lock:
            summary = self._latencies.get(name)
            if summary is None:
                summary = self._latencies[name] = _LatencySummary(self._window)
            summary.add(seconds)

    def latency(self, name: str) -> dict[str, Any]:
        with self._lock:
            summary = self._latencies.get(name) or _LatencySummary(self._window)
            return summary.as_dict()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "latencies": {k: v.as_dict() for k, v in self._latencies.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._latencies.clear()


metrics = MetricsRegistry()
