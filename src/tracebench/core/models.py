"""Value types shared by the driver, tracker and telemetry pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Status recorded when the request never produced an HTTP response.
TRANSPORT_FAILURE = 0


@dataclass(frozen=True)
class SlowEntry:
    """One row of the slow-request table."""

    correlation_id: str
    duration_ms: float
    status: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to the artifact representation."""
        return {
            "corr": self.correlation_id,
            "dur": self.duration_ms,
            "status": self.status,
        }


@dataclass(frozen=True)
class Observation:
    """Outcome of one completed (or failed) request.

    ``duration_ms`` runs from dispatch to completion. ``headers_ms`` is taken
    when response headers arrive and ``body_ms`` once the body is drained;
    for error responses the body is not read and ``body_ms`` equals
    ``headers_ms``.
    """

    correlation_id: str
    url: str
    start_time: str
    duration_ms: float
    status: int
    request_body_bytes: int
    headers_ms: float = 0.0
    body_ms: float = 0.0
    vu: int = 0
    iteration: int = 0
    traceparent: str = ""
    error: str | None = None
    server_timing: dict[str, str] = field(default_factory=dict)
    timing_drift_ms: float | None = None

    @property
    def ok(self) -> bool:
        """Request reached the server and got a non-error status."""
        return self.status != TRANSPORT_FAILURE and self.status < 400

    @property
    def transport_failed(self) -> bool:
        return self.status == TRANSPORT_FAILURE

    def to_slow_entry(self) -> SlowEntry:
        return SlowEntry(
            correlation_id=self.correlation_id,
            duration_ms=self.duration_ms,
            status=self.status,
        )
