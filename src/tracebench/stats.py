"""Run-level latency statistics.

Counts are exact for the whole run; percentiles are computed over a bounded
window of the most recent observations so memory stays flat on long runs.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any

from tracebench.core.models import Observation


@dataclass
class RunStats:
    """Aggregated statistics for a run."""

    total_requests: int = 0
    total_errors: int = 0
    transport_failures: int = 0
    iteration_errors: int = 0
    elapsed_s: float = 0.0

    avg_duration_ms: float = 0.0
    med_duration_ms: float = 0.0
    p90_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    p99_duration_ms: float = 0.0
    max_duration_ms: float = 0.0

    med_headers_ms: float = 0.0
    p95_headers_ms: float = 0.0

    max_timing_drift_ms: float | None = None

    @property
    def request_rate(self) -> float:
        """Requests per second over the run."""
        if self.elapsed_s <= 0:
            return 0.0
        return self.total_requests / self.elapsed_s

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_errors / self.total_requests

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "requests": {
                "total": self.total_requests,
                "rate": round(self.request_rate, 2),
                "errors": self.total_errors,
                "error_rate": round(self.error_rate, 4),
                "transport_failures": self.transport_failures,
                "iteration_errors": self.iteration_errors,
            },
            "latency_ms": {
                "avg": round(self.avg_duration_ms, 2),
                "med": round(self.med_duration_ms, 2),
                "p90": round(self.p90_duration_ms, 2),
                "p95": round(self.p95_duration_ms, 2),
                "p99": round(self.p99_duration_ms, 2),
                "max": round(self.max_duration_ms, 2),
            },
            "headers_ms": {
                "med": round(self.med_headers_ms, 2),
                "p95": round(self.p95_headers_ms, 2),
            },
            "max_timing_drift_ms": self.max_timing_drift_ms,
            "elapsed_s": round(self.elapsed_s, 3),
        }


class StatsCollector:
    """Collects per-request outcomes for the summary."""

    def __init__(self, max_history: int = 100_000) -> None:
        self.max_history = max_history
        self._durations: deque[float] = deque(maxlen=max_history)
        self._headers: deque[float] = deque(maxlen=max_history)
        self._total = 0
        self._errors = 0
        self._transport_failures = 0
        self._iteration_errors = 0
        self._duration_sum = 0.0
        self._max_duration = 0.0
        self._max_drift: float | None = None
        self._started_at: float | None = None
        self._stopped_at: float | None = None

    def start(self) -> None:
        self._started_at = time.monotonic()
        self._stopped_at = None

    def stop(self) -> None:
        self._stopped_at = time.monotonic()

    def record(self, observation: Observation) -> None:
        """Record one observation."""
        self._total += 1
        if not observation.ok:
            self._errors += 1
        if observation.transport_failed:
            self._transport_failures += 1

        self._durations.append(observation.duration_ms)
        self._headers.append(observation.headers_ms)
        self._duration_sum += observation.duration_ms
        self._max_duration = max(self._max_duration, observation.duration_ms)

        drift = observation.timing_drift_ms
        if drift is not None and (self._max_drift is None or drift > self._max_drift):
            self._max_drift = drift

    def record_iteration_error(self) -> None:
        """Record an iteration that failed before producing an observation."""
        self._iteration_errors += 1

    def get_stats(self) -> RunStats:
        """Get aggregated statistics."""
        stats = RunStats(
            total_requests=self._total,
            total_errors=self._errors,
            transport_failures=self._transport_failures,
            iteration_errors=self._iteration_errors,
            max_duration_ms=self._max_duration,
            max_timing_drift_ms=self._max_drift,
        )

        if self._started_at is not None:
            end = self._stopped_at if self._stopped_at is not None else time.monotonic()
            stats.elapsed_s = end - self._started_at

        if self._total:
            stats.avg_duration_ms = self._duration_sum / self._total

        if self._durations:
            durations = sorted(self._durations)
            stats.med_duration_ms = percentile(durations, 50)
            stats.p90_duration_ms = percentile(durations, 90)
            stats.p95_duration_ms = percentile(durations, 95)
            stats.p99_duration_ms = percentile(durations, 99)

        if self._headers:
            headers = sorted(self._headers)
            stats.med_headers_ms = percentile(headers, 50)
            stats.p95_headers_ms = percentile(headers, 95)

        return stats


def percentile(sorted_data: list[float], pct: float) -> float:
    """Linear-interpolated percentile of already sorted data."""
    if not sorted_data:
        return 0.0
    k = (len(sorted_data) - 1) * pct / 100
    f = int(k)
    c = f + 1 if f < len(sorted_data) - 1 else f
    return sorted_data[f] + (sorted_data[c] - sorted_data[f]) * (k - f)
