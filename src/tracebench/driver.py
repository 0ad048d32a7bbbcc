"""Single-iteration request driver.

One call to :meth:`RequestDriver.run` issues one correlated POST against the
system under test, times it, and fans the outcome out to the slow-request
tracker, the run statistics and (when sampled) the telemetry buffer.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone

import httpx
import orjson

from tracebench.config import RunConfig
from tracebench.core.correlation import CorrelationGenerator
from tracebench.core.models import TRANSPORT_FAILURE, Observation
from tracebench.core.sampling import SamplingGate
from tracebench.core.topk import TopKTracker
from tracebench.observability.logging import LogContext
from tracebench.stats import StatsCollector
from tracebench.telemetry.buffer import TelemetryBuffer
from tracebench.telemetry.records import make_telemetry_record, utc_now_iso

logger = logging.getLogger(__name__)

# Timing headers echoed by the gateway (apim) and the backend (casper)
TIMING_PREFIXES = ("x-apim-tx", "x-casper-tx")
TRACKED_HEADERS = tuple(
    f"{prefix}-{suffix}"
    for prefix in TIMING_PREFIXES
    for suffix in ("duration", "endtime", "starttime")
)

_FRACTION = re.compile(r"(\.\d{6})\d+")


def capture_tracked_headers(headers: httpx.Headers) -> dict[str, str]:
    """Pick the tracked timing headers out of a response (case-insensitive)."""
    return {name: headers[name] for name in TRACKED_HEADERS if name in headers}


def _parse_timestamp(value: str) -> datetime:
    # .NET round-trip timestamps carry 7 fractional digits
    text = _FRACTION.sub(r"\1", value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_timing_drift(server_timing: dict[str, str]) -> float | None:
    """Compare echoed durations with their echoed start/end timestamps.

    For every prefix that reports all three headers, ``end - start`` is
    recomputed in milliseconds and compared to the reported duration. Returns
    the largest absolute difference, or None if nothing could be checked.
    """
    drift: float | None = None
    for prefix in TIMING_PREFIXES:
        try:
            start = _parse_timestamp(server_timing[f"{prefix}-starttime"])
            end = _parse_timestamp(server_timing[f"{prefix}-endtime"])
            reported = float(server_timing[f"{prefix}-duration"])
        except (KeyError, ValueError):
            continue
        recomputed = (end - start).total_seconds() * 1000
        diff = abs(recomputed - reported)
        if drift is None or diff > drift:
            drift = diff
    return drift


class RequestDriver:
    """Issues one request per iteration and records its outcome."""

    def __init__(
        self,
        config: RunConfig,
        client: httpx.AsyncClient,
        tracker: TopKTracker,
        *,
        buffer: TelemetryBuffer | None = None,
        stats: StatsCollector | None = None,
        correlation: CorrelationGenerator | None = None,
        sampling: SamplingGate | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.tracker = tracker
        self.buffer = buffer
        self.stats = stats
        self.correlation = correlation or CorrelationGenerator()
        self.sampling = sampling or SamplingGate()
        self._base_url = config.target_url.rstrip("/")

    def request_url(self, correlation_id: str) -> str:
        if self.config.append_correlation_path:
            return f"{self._base_url}/{correlation_id}"
        return self._base_url

    async def run(self, vu: int = 0, iteration: int = 0) -> Observation:
        """Execute one iteration. Never raises for request-level failures."""
        correlation_id, traceparent = self.correlation.next()

        with LogContext(correlation_id=correlation_id):
            observation = await self._send(correlation_id, traceparent, vu, iteration)
            await self._record(observation)

        return observation

    async def _send(
        self, correlation_id: str, traceparent: str, vu: int, iteration: int
    ) -> Observation:
        url = self.request_url(correlation_id)
        body = orjson.dumps({"transactionId": correlation_id})
        headers = {
            "Content-Type": "application/json",
            "x-correlation-id": correlation_id,
            "traceparent": traceparent,
        }

        status = TRANSPORT_FAILURE
        error: str | None = None
        headers_ms = 0.0
        body_ms = 0.0
        server_timing: dict[str, str] = {}

        start_time = utc_now_iso()
        started = time.perf_counter()

        def elapsed_ms() -> float:
            return round((time.perf_counter() - started) * 1000, 3)

        try:
            async with self.client.stream("POST", url, content=body, headers=headers) as response:
                headers_ms = elapsed_ms()
                status = response.status_code
                server_timing = capture_tracked_headers(response.headers)
                if status < 400:
                    await response.aread()
                    body_ms = elapsed_ms()
                else:
                    body_ms = headers_ms
        except httpx.HTTPError as e:
            status = TRANSPORT_FAILURE
            error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            logger.debug(f"Transport failure for {url}: {error}")

        duration_ms = elapsed_ms()
        if error is not None:
            headers_ms = headers_ms or duration_ms
            body_ms = body_ms or duration_ms

        return Observation(
            correlation_id=correlation_id,
            url=url,
            start_time=start_time,
            duration_ms=duration_ms,
            status=status,
            request_body_bytes=len(body),
            headers_ms=headers_ms,
            body_ms=body_ms,
            vu=vu,
            iteration=iteration,
            traceparent=traceparent,
            error=error,
            server_timing=server_timing,
            timing_drift_ms=compute_timing_drift(server_timing),
        )

    async def _record(self, observation: Observation) -> None:
        config = self.config

        if config.log_all or (config.slow_ms > 0 and observation.duration_ms >= config.slow_ms):
            logger.info(
                f"SLOW_REQ corr={observation.correlation_id} "
                f"dur_ms={observation.duration_ms} status={observation.status}"
            )

        self.tracker.offer(observation.to_slow_entry())

        if self.stats is not None:
            self.stats.record(observation)

        # The gate is consulted on every iteration so the draw count stays fixed
        admitted = self.sampling.admit(config.sampling)
        if admitted and self.buffer is not None and config.instrumentation_key:
            record = make_telemetry_record(
                observation,
                instrumentation_key=config.instrumentation_key,
                cloud_role=config.cloud_role,
                sampling=config.sampling,
                test_type=config.test_type,
            )
            await self.buffer.enqueue(record)
