"""Bounded telemetry buffer with size, time and overflow flush triggers.

Records accumulate in a pending batch shared by all virtual clients. A flush
hands the whole batch to the ingestion sender in one call. Delivery is
at-most-once: a failed batch is counted and dropped, never re-queued.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from tracebench.errors import IngestionError

logger = logging.getLogger(__name__)

# Submits one batch, returns the HTTP status of the ingestion call
BatchSender = Callable[[list[dict[str, Any]]], Awaitable[int]]

# Floor for the background flusher's poll period
MIN_FLUSH_POLL_MS = 50


@dataclass(frozen=True)
class BufferConfig:
    """Configuration for the telemetry buffer."""

    # Minimum pending records before a periodic flush
    batch_size: int = 1

    # Minimum time between periodic flushes (milliseconds)
    flush_interval_ms: int = 2000

    # Pending records that force an immediate flush
    max_buffer_size: int = 5000

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.flush_interval_ms < 0:
            raise ValueError("flush_interval_ms must be >= 0")
        if self.max_buffer_size < 1:
            raise ValueError("max_buffer_size must be >= 1")


@dataclass
class BufferMetrics:
    """Counters for one buffer, scoped to a single run."""

    enqueued: int = 0
    sent: int = 0
    failed: int = 0
    flush_calls: int = 0
    forced_flushes: int = 0
    flush_errors: int = 0
    avg_batch_size: float = 0.0
    avg_flush_latency_ms: float = 0.0
    last_flush_time: float = 0.0

    # Rolling window of the last 100 flushes
    _batch_sizes: deque[int] = field(default_factory=lambda: deque(maxlen=100))
    _flush_latencies: deque[float] = field(default_factory=lambda: deque(maxlen=100))

    def record_flush(self, batch_size: int, latency_ms: float, ok: bool) -> None:
        """Record one flush attempt."""
        self.flush_calls += 1
        if ok:
            self.sent += batch_size
        else:
            self.failed += batch_size
        self.last_flush_time = time.time()

        self._batch_sizes.append(batch_size)
        self._flush_latencies.append(latency_ms)
        self.avg_batch_size = sum(self._batch_sizes) / len(self._batch_sizes)
        self.avg_flush_latency_ms = sum(self._flush_latencies) / len(self._flush_latencies)


class TelemetryBuffer:
    """Accumulates telemetry records and decides when to ship them.

    Triggers:
    - ``maybe_flush``: pending >= batch_size AND flush interval elapsed
    - ``enqueue``: pending reaches max_buffer_size (forced, includes the record)
    - ``force_flush``: unconditional, used at run end

    The buffer lock only covers the swap of the pending list; the network call
    runs outside it, on a batch nobody else can see.
    """

    def __init__(
        self,
        sender: BatchSender,
        config: BufferConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sender = sender
        self.config = config or BufferConfig()
        self._clock = clock

        self._pending: list[dict[str, Any]] = []
        self._lock = asyncio.Lock()
        self._last_flush = clock()

        self._running = False
        self._stop_event = asyncio.Event()
        self._flush_task: asyncio.Task[None] | None = None

        self.metrics = BufferMetrics()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        """Start the background flusher."""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self._flush_task = asyncio.create_task(self._periodic_flush())
        logger.info(
            f"Telemetry buffer started (batch_size={self.config.batch_size}, "
            f"flush_interval={self.config.flush_interval_ms}ms, "
            f"max_buffer={self.config.max_buffer_size})"
        )

    async def stop(self) -> None:
        """Stop the background flusher. Pending records are left for ``force_flush``.

        The flusher is woken rather than cancelled, so a batch it is already
        submitting is delivered and accounted before this returns.
        """
        self._running = False
        self._stop_event.set()
        if self._flush_task:
            await self._flush_task
            self._flush_task = None

    async def enqueue(self, record: dict[str, Any]) -> None:
        """Append a record, flushing immediately when the buffer is full."""
        async with self._lock:
            self._pending.append(record)
            self.metrics.enqueued += 1
            if len(self._pending) < self.config.max_buffer_size:
                return
            batch = self._take_batch()

        self.metrics.forced_flushes += 1
        logger.debug(f"Buffer reached {len(batch)} records, forcing flush")
        await self._submit(batch)

    async def maybe_flush(self) -> bool:
        """Flush if both the size and the interval conditions hold."""
        async with self._lock:
            if len(self._pending) < self.config.batch_size:
                return False
            # Rounded to absorb float noise in clock differences
            elapsed_ms = round((self._clock() - self._last_flush) * 1000, 6)
            if elapsed_ms < self.config.flush_interval_ms:
                return False
            batch = self._take_batch()

        await self._submit(batch)
        return True

    async def force_flush(self) -> bool:
        """Flush whatever is pending. No-op on an empty buffer."""
        async with self._lock:
            if not self._pending:
                return False
            batch = self._take_batch()

        await self._submit(batch)
        return True

    def _take_batch(self) -> list[dict[str, Any]]:
        """Detach the pending batch. Caller holds the lock."""
        batch = self._pending
        self._pending = []
        self._last_flush = self._clock()
        return batch

    async def _submit(self, batch: list[dict[str, Any]]) -> None:
        """Send one detached batch and account for the outcome."""
        size = len(batch)
        started = time.perf_counter()
        status: int | None = None

        try:
            status = await self._sender(batch)
        except IngestionError as e:
            logger.warning(f"Ingestion transport failed items={size} error={e}")
        except Exception as e:
            self.metrics.flush_errors += 1
            logger.error(f"Error flushing batch of {size} records: {e}")
            raise
        finally:
            # Every detached batch is accounted exactly once, sent or failed
            self.metrics.record_flush(
                size,
                (time.perf_counter() - started) * 1000,
                ok=status is not None and status < 400,
            )

        if status is None:
            return
        if status < 400:
            logger.debug(f"Flushed {size} records status={status}")
        else:
            logger.warning(f"Ingestion failed status={status} items={size}")

    async def _periodic_flush(self) -> None:
        """Check the flush conditions on a timer, independent of any VU."""
        interval_sec = max(self.config.flush_interval_ms, MIN_FLUSH_POLL_MS) / 1000.0

        while self._running:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_sec)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.maybe_flush()
            except Exception as e:
                logger.error(f"Error in periodic flush: {e}")

    def get_metrics(self) -> dict[str, float | int]:
        """Get current metrics as a dictionary."""
        return {
            "enqueued": self.metrics.enqueued,
            "sent": self.metrics.sent,
            "failed": self.metrics.failed,
            "flush_calls": self.metrics.flush_calls,
            "forced_flushes": self.metrics.forced_flushes,
            "flush_errors": self.metrics.flush_errors,
            "avg_batch_size": round(self.metrics.avg_batch_size, 2),
            "avg_flush_latency_ms": round(self.metrics.avg_flush_latency_ms, 2),
            "pending": len(self._pending),
            "last_flush_time": self.metrics.last_flush_time,
        }
