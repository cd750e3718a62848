from __future__ import annotations

from collections import deque
from threading import Lock
from time import perf_counter
from typing import Deque, Dict

from prometheus_client import CollectorRegistry, Counter, Histogram

registry = CollectorRegistry()

UPLOAD_SECONDS = Histogram(
    "clip_upload_seconds", "Time spent persisting a clip to object storage", registry=registry
)
ANALYSIS_SECONDS = Histogram(
    "clip_analysis_seconds", "Time spent waiting on the remote analysis capability", registry=registry
)
PIPELINE_EVENTS = Counter(
    "pipeline_events_total", "Submission pipeline events", ["event"], registry=registry
)


class MetricsCollector:
    """Process-local view of pipeline health for /healthz.

    Keeps the last ``capacity`` upload and analysis latencies plus named event
    counters (analysis_fallback, interview_completed, upload_failed,
    ledger_write_failed). Everything is mirrored to the Prometheus registry.
    """

    def __init__(self, capacity: int = 500) -> None:
        self._lock = Lock()
        self._upload_ms: Deque[float] = deque(maxlen=capacity)
        self._analysis_ms: Deque[float] = deque(maxlen=capacity)
        self._errors = 0
        self._counters: Dict[str, int] = {}

    def record_upload_ms(self, ms: float) -> None:
        ms = max(0.0, ms)
        with self._lock:
            self._upload_ms.append(ms)
        UPLOAD_SECONDS.observe(ms / 1000.0)

    def record_analysis_ms(self, ms: float) -> None:
        ms = max(0.0, ms)
        with self._lock:
            self._analysis_ms.append(ms)
        ANALYSIS_SECONDS.observe(ms / 1000.0)

    def record_error(self) -> None:
        with self._lock:
            self._errors += 1

    def increment_counter(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + int(value)
        PIPELINE_EVENTS.labels(event=name).inc(value)

    @staticmethod
    def _p95(values: list[float]) -> float:
        if not values:
            return 0.0
        ordered = sorted(values)
        return round(ordered[int(round(0.95 * (len(ordered) - 1)))], 2)

    def snapshot(self) -> dict:
        with self._lock:
            uploads = list(self._upload_ms)
            analyses = list(self._analysis_ms)
            errors = self._errors
            counters = dict(self._counters)
        return {
            "upload_p95_ms": self._p95(uploads),
            "analysis_p95_ms": self._p95(analyses),
            "error_rate": round(errors / max(1, len(uploads) + len(analyses)), 4),
            "counts": {"uploads": len(uploads), "analyses": len(analyses), "errors": errors, **counters},
        }


collector = MetricsCollector()


class Timer:
    """Measures a block in milliseconds; the caller feeds ``ms`` to the right series."""

    def __init__(self) -> None:
        self._start = 0.0
        self.ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.ms = max(0.0, (perf_counter() - self._start) * 1000.0)
