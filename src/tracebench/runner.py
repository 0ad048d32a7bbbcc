"""Run coordinator: owns the virtual-client pool for one load run.

Lifecycle:
    IDLE -> RUNNING -> DRAINING -> DONE

Example:
    config = RunConfig.load(target_url="http://localhost:8080/transaction")
    async with httpx.AsyncClient() as client:
        coordinator = RunCoordinator(config, client=client)
        result = await coordinator.run()

The duration is a soft deadline: it is checked between iterations, and a
request in flight when it expires is allowed to finish so its latency is
recorded intact.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from tracebench.config import RunConfig
from tracebench.core.correlation import CorrelationGenerator
from tracebench.core.models import SlowEntry
from tracebench.core.sampling import SamplingGate
from tracebench.core.topk import TopKTracker
from tracebench.driver import RequestDriver
from tracebench.observability.logging import LogContext
from tracebench.stats import RunStats, StatsCollector
from tracebench.telemetry.buffer import BatchSender, BufferConfig, TelemetryBuffer
from tracebench.telemetry.ingestion import IngestionClient

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Lifecycle state of a run."""

    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"


_TRANSITIONS = {
    RunState.IDLE: {RunState.RUNNING},
    RunState.RUNNING: {RunState.DRAINING},
    RunState.DRAINING: {RunState.DONE},
    RunState.DONE: set(),
}


@dataclass
class RunResult:
    """Final counters and the slow-request table for a finished run."""

    config: RunConfig
    stats: RunStats
    slowest: list[SlowEntry]
    tracked_total: int
    offered_total: int
    ingestion: dict[str, Any] = field(default_factory=dict)
    flush_error: str | None = None

    @property
    def telemetry_enabled(self) -> bool:
        return self.config.telemetry_enabled

    def top(self) -> list[SlowEntry]:
        """Slowest entries limited to the configured summary size."""
        return self.slowest[: self.config.top_n]


class RunCoordinator:
    """Runs ``config.vus`` virtual-client loops for ``config.duration_s``."""

    def __init__(
        self,
        config: RunConfig,
        client: httpx.AsyncClient | None = None,
        *,
        sender: BatchSender | None = None,
        sampling: SamplingGate | None = None,
        correlation: CorrelationGenerator | None = None,
        install_signal_handlers: bool = False,
    ) -> None:
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._install_signal_handlers = install_signal_handlers

        self.tracker = TopKTracker(config.track_capacity, min_duration_ms=config.slow_ms)
        self.stats = StatsCollector()

        self._ingestion: IngestionClient | None = None
        self.buffer: TelemetryBuffer | None = None
        if config.telemetry_enabled:
            if sender is None:
                self._ingestion = IngestionClient(
                    config.ingestion_url, timeout=config.ingestion_timeout_s
                )
                sender = self._ingestion.send
            self.buffer = TelemetryBuffer(
                sender,
                BufferConfig(
                    batch_size=config.batch_size,
                    flush_interval_ms=config.flush_interval_ms,
                    max_buffer_size=config.max_buffer,
                ),
            )

        self._sampling = sampling
        self._correlation = correlation

        self.state = RunState.IDLE
        self._stop_event = asyncio.Event()
        self._iterations = 0

    def _transition(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid run transition: {self.state.value} -> {new_state.value}")
        logger.debug(f"Run state {self.state.value} -> {new_state.value}")
        self.state = new_state

    def stop(self) -> None:
        """Request the run to stop. In-flight requests still complete."""
        if not self._stop_event.is_set():
            logger.info("Stop requested, draining virtual clients")
            self._stop_event.set()

    @property
    def iterations(self) -> int:
        return self._iterations

    async def run(self) -> RunResult:
        """Execute the run and return its result."""
        self._transition(RunState.RUNNING)

        client = self._client
        if client is None:
            client = httpx.AsyncClient(
                timeout=self.config.request_timeout_s,
                limits=httpx.Limits(
                    max_connections=self.config.vus,
                    max_keepalive_connections=self.config.vus,
                ),
            )

        driver = RequestDriver(
            self.config,
            client,
            self.tracker,
            buffer=self.buffer,
            stats=self.stats,
            correlation=self._correlation,
            sampling=self._sampling,
        )

        loop = asyncio.get_running_loop()
        if self._install_signal_handlers:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.stop)

        logger.info(
            f"Run started: target={self.config.target_url} vus={self.config.vus} "
            f"duration={self.config.duration_s}s telemetry="
            f"{'on' if self.buffer else 'off'} sampling={self.config.sampling}"
        )

        flush_error: str | None = None
        tasks: list[asyncio.Task[None]] = []
        try:
            if self.buffer:
                await self.buffer.start()

            self.stats.start()
            deadline = time.monotonic() + self.config.duration_s
            tasks = [
                asyncio.create_task(self._vu_loop(vu, driver, deadline), name=f"vu-{vu}")
                for vu in range(1, self.config.vus + 1)
            ]

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.config.duration_s
                )
            except asyncio.TimeoutError:
                pass

            self._transition(RunState.DRAINING)
            self._stop_event.set()
            await asyncio.gather(*tasks)
            self.stats.stop()

            if self.buffer:
                await self.buffer.stop()
                try:
                    await self.buffer.force_flush()
                except Exception as e:
                    flush_error = f"{type(e).__name__}: {e}"
                    logger.error(f"Final telemetry flush failed: {flush_error}")
        finally:
            # Only reached with live VUs when run() itself was cancelled
            unfinished = [task for task in tasks if not task.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)
            if self.buffer:
                await self.buffer.stop()

            if self._install_signal_handlers:
                for sig in (signal.SIGTERM, signal.SIGINT):
                    loop.remove_signal_handler(sig)
            if self._owns_client:
                await client.aclose()
            if self._ingestion is not None:
                await self._ingestion.aclose()

        self._transition(RunState.DONE)

        result = RunResult(
            config=self.config,
            stats=self.stats.get_stats(),
            slowest=self.tracker.snapshot_sorted_descending(),
            tracked_total=len(self.tracker),
            offered_total=self.tracker.offered,
            ingestion=self.buffer.get_metrics() if self.buffer else {},
            flush_error=flush_error,
        )
        logger.info(
            f"Run finished: requests={result.stats.total_requests} "
            f"errors={result.stats.total_errors} iterations={self._iterations}"
        )
        return result

    async def _vu_loop(self, vu: int, driver: RequestDriver, deadline: float) -> None:
        """One virtual client: request, flush check, think, repeat."""
        think_s = self.config.think_ms / 1000.0
        iteration = 0

        with LogContext(vu=vu):
            while not self._stop_event.is_set() and time.monotonic() < deadline:
                try:
                    await driver.run(vu=vu, iteration=iteration)
                except Exception as e:
                    self.stats.record_iteration_error()
                    logger.error(f"Iteration {iteration} failed: {e}")
                iteration += 1
                self._iterations += 1

                if self.buffer:
                    try:
                        await self.buffer.maybe_flush()
                    except Exception as e:
                        logger.error(f"Telemetry flush failed: {e}")

                if think_s > 0:
                    try:
                        await asyncio.wait_for(self._stop_event.wait(), timeout=think_s)
                    except asyncio.TimeoutError:
                        pass
                else:
                    # Let the other virtual clients in
                    await asyncio.sleep(0)
