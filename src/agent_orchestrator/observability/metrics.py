"""Metrics sinks for saga and workflow counters and histograms.

The orchestration core only writes to a sink; it never reads values back.
"""
import threading
from collections import defaultdict, deque
from typing import Deque, Protocol

_MAX_SAMPLES = 500


def _tag_key(name: str, tags: dict[str, str] | None) -> str:
    if not tags:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
    return f"{name}{{{rendered}}}"


class MetricsSink(Protocol):
    """Side-effect-only metrics interface."""

    def increment(
        self, name: str, value: float = 1, tags: dict[str, str] | None = None
    ) -> None:
        ...

    def histogram(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> None:
        ...


class NullMetrics:
    """Sink that discards everything."""

    def increment(
        self, name: str, value: float = 1, tags: dict[str, str] | None = None
    ) -> None:
        return None

    def histogram(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> None:
        return None


class _HistogramStats:
    def __init__(self):
        self.count = 0
        self.samples: Deque[float] = deque(maxlen=_MAX_SAMPLES)

    def add(self, value: float) -> None:
        self.count += 1
        self.samples.append(float(value))

    def summary(self) -> dict:
        if not self.samples:
            return {"count": self.count, "avg": 0.0, "p95": 0.0}
        arr = sorted(self.samples)
        avg = sum(arr) / len(arr)
        p95_idx = max(0, int(0.95 * len(arr)) - 1)
        return {"count": self.count, "avg": round(avg, 4), "p95": round(arr[p95_idx], 4)}


class InMemoryMetrics:
    """Thread-safe in-process sink keeping counters and bounded histogram samples."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[str, float] = defaultdict(float)
        self._histograms: dict[str, _HistogramStats] = defaultdict(_HistogramStats)

    def increment(
        self, name: str, value: float = 1, tags: dict[str, str] | None = None
    ) -> None:
        with self._lock:
            self._counters[_tag_key(name, tags)] += value

    def histogram(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> None:
        with self._lock:
            self._histograms[_tag_key(name, tags)].add(value)

    def counter_value(self, name: str, tags: dict[str, str] | None = None) -> float:
        """Current value of a counter (0 if never incremented)."""
        with self._lock:
            return self._counters.get(_tag_key(name, tags), 0.0)

    def summary(self) -> dict[str, dict]:
        """Snapshot of all counters and histogram summaries."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "histograms": {k: v.summary() for k, v in self._histograms.items()},
            }
