"""Tests for the telemetry buffer."""

import asyncio
from typing import Any

import pytest

from tracebench.errors import IngestionError
from tracebench.telemetry.buffer import BufferConfig, BufferMetrics, TelemetryBuffer


class FakeSender:
    """Records submitted batches and answers with a fixed status."""

    def __init__(self, status: int = 200, error: Exception | None = None) -> None:
        self.status = status
        self.error = error
        self.batches: list[list[dict[str, Any]]] = []

    async def __call__(self, batch: list[dict[str, Any]]) -> int:
        self.batches.append(list(batch))
        if self.error is not None:
            raise self.error
        return self.status


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


def _record(i: int) -> dict[str, Any]:
    return {"name": "record", "i": i}


class TestBufferConfig:
    """Tests for BufferConfig."""

    def test_defaults(self) -> None:
        config = BufferConfig()
        assert config.batch_size == 1
        assert config.flush_interval_ms == 2000
        assert config.max_buffer_size == 5000

    @pytest.mark.parametrize(
        "kwargs",
        [{"batch_size": 0}, {"flush_interval_ms": -1}, {"max_buffer_size": 0}],
    )
    def test_rejects_invalid_values(self, kwargs: dict[str, int]) -> None:
        with pytest.raises(ValueError):
            BufferConfig(**kwargs)


class TestBufferMetrics:
    """Tests for BufferMetrics."""

    def test_record_flush_updates_counters(self) -> None:
        metrics = BufferMetrics()
        metrics.record_flush(4, 10.0, ok=True)
        metrics.record_flush(2, 20.0, ok=False)

        assert metrics.sent == 4
        assert metrics.failed == 2
        assert metrics.flush_calls == 2
        assert metrics.avg_batch_size == 3.0
        assert metrics.avg_flush_latency_ms == 15.0


class TestTelemetryBuffer:
    """Tests for TelemetryBuffer flush policy."""

    @pytest.fixture
    def sender(self) -> FakeSender:
        return FakeSender()

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    async def test_single_record_flushes_with_zero_interval(self, sender: FakeSender) -> None:
        """batch_size=1, interval=0: enqueue + maybe_flush sends one batch of one."""
        buffer = TelemetryBuffer(sender, BufferConfig(batch_size=1, flush_interval_ms=0))

        await buffer.enqueue(_record(1))
        flushed = await buffer.maybe_flush()

        assert flushed is True
        assert sender.batches == [[_record(1)]]
        assert buffer.pending_count == 0
        assert buffer.metrics.sent == 1

    async def test_waits_for_batch_size(self, sender: FakeSender) -> None:
        """batch_size=2: first maybe_flush is a no-op, second flushes both."""
        buffer = TelemetryBuffer(sender, BufferConfig(batch_size=2, flush_interval_ms=0))

        await buffer.enqueue(_record(1))
        assert await buffer.maybe_flush() is False
        assert buffer.pending_count == 1
        assert sender.batches == []

        await buffer.enqueue(_record(2))
        assert await buffer.maybe_flush() is True
        assert buffer.pending_count == 0
        assert buffer.metrics.sent == 2
        assert sender.batches == [[_record(1), _record(2)]]

    async def test_waits_for_flush_interval(self, sender: FakeSender, clock: FakeClock) -> None:
        """A full batch is held until the interval has elapsed."""
        buffer = TelemetryBuffer(
            sender, BufferConfig(batch_size=1, flush_interval_ms=2000), clock=clock
        )

        await buffer.enqueue(_record(1))
        clock.advance_ms(1999)
        assert await buffer.maybe_flush() is False

        clock.advance_ms(1)
        assert await buffer.maybe_flush() is True
        assert len(sender.batches) == 1

    async def test_flush_resets_interval(self, sender: FakeSender, clock: FakeClock) -> None:
        """After a flush the interval starts over."""
        buffer = TelemetryBuffer(
            sender, BufferConfig(batch_size=1, flush_interval_ms=100), clock=clock
        )
        clock.advance_ms(100)
        await buffer.enqueue(_record(1))
        assert await buffer.maybe_flush() is True

        await buffer.enqueue(_record(2))
        clock.advance_ms(50)
        assert await buffer.maybe_flush() is False
        clock.advance_ms(50)
        assert await buffer.maybe_flush() is True

    async def test_max_buffer_forces_single_flush(self, sender: FakeSender) -> None:
        """max_buffer_size enqueues trigger exactly one forced flush."""
        buffer = TelemetryBuffer(
            sender, BufferConfig(batch_size=100, flush_interval_ms=60_000, max_buffer_size=5)
        )

        for i in range(5):
            await buffer.enqueue(_record(i))

        assert len(sender.batches) == 1
        assert sender.batches[0] == [_record(i) for i in range(5)]
        assert buffer.pending_count == 0
        assert buffer.metrics.forced_flushes == 1
        assert buffer.metrics.sent == 5

    async def test_force_flush_on_empty_is_noop(self, sender: FakeSender) -> None:
        """No outbound call and unchanged counters for an empty buffer."""
        buffer = TelemetryBuffer(sender)

        assert await buffer.force_flush() is False
        assert sender.batches == []
        assert buffer.metrics.flush_calls == 0
        assert buffer.metrics.sent == 0
        assert buffer.metrics.failed == 0

    async def test_force_flush_ignores_conditions(self, sender: FakeSender) -> None:
        """force_flush sends a partial batch before the interval."""
        buffer = TelemetryBuffer(sender, BufferConfig(batch_size=10, flush_interval_ms=60_000))
        await buffer.enqueue(_record(1))

        assert await buffer.force_flush() is True
        assert sender.batches == [[_record(1)]]

    async def test_error_status_counts_batch_failed(self) -> None:
        """A 500 from ingestion fails the whole batch, which is dropped."""
        sender = FakeSender(status=500)
        buffer = TelemetryBuffer(sender, BufferConfig(batch_size=3, flush_interval_ms=0))

        for i in range(3):
            await buffer.enqueue(_record(i))
        await buffer.maybe_flush()

        assert buffer.metrics.failed == 3
        assert buffer.metrics.sent == 0
        assert buffer.metrics.flush_calls == 1
        assert buffer.pending_count == 0

        # Not retried on the next flush
        assert await buffer.force_flush() is False
        assert len(sender.batches) == 1

    async def test_transport_error_counts_batch_failed(self) -> None:
        """Transport failures are absorbed and counted."""
        sender = FakeSender(error=IngestionError("ConnectError", item_count=2))
        buffer = TelemetryBuffer(sender, BufferConfig(batch_size=2, flush_interval_ms=0))

        await buffer.enqueue(_record(1))
        await buffer.enqueue(_record(2))
        assert await buffer.maybe_flush() is True

        assert buffer.metrics.failed == 2
        assert buffer.metrics.sent == 0
        assert buffer.pending_count == 0

    async def test_failure_is_logged_as_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        """Failed flushes log status and item count."""
        buffer = TelemetryBuffer(FakeSender(status=503), BufferConfig(flush_interval_ms=0))
        await buffer.enqueue(_record(1))

        with caplog.at_level("WARNING", logger="tracebench.telemetry.buffer"):
            await buffer.force_flush()

        assert "status=503 items=1" in caplog.text

    async def test_unexpected_sender_error_propagates(self) -> None:
        """Errors other than transport failures are counted and re-raised."""
        buffer = TelemetryBuffer(FakeSender(error=RuntimeError("boom")))
        await buffer.enqueue(_record(1))

        with pytest.raises(RuntimeError):
            await buffer.force_flush()

        assert buffer.metrics.failed == 1
        assert buffer.metrics.flush_errors == 1
        assert buffer.pending_count == 0

    async def test_batch_is_frozen_snapshot(self) -> None:
        """Records enqueued during a flush land in the next batch."""
        release = asyncio.Event()
        batches: list[list[dict[str, Any]]] = []

        async def slow_sender(batch: list[dict[str, Any]]) -> int:
            batches.append(batch)
            await release.wait()
            return 200

        buffer = TelemetryBuffer(slow_sender, BufferConfig(batch_size=1, flush_interval_ms=0))
        await buffer.enqueue(_record(1))

        flush_task = asyncio.create_task(buffer.force_flush())
        await asyncio.sleep(0)
        await buffer.enqueue(_record(2))
        release.set()
        await flush_task

        assert batches == [[_record(1)]]
        assert buffer.pending_count == 1

        await buffer.force_flush()
        assert batches[1] == [_record(2)]
        assert buffer.metrics.sent == 2

    async def test_concurrent_enqueues_lose_nothing(self, sender: FakeSender) -> None:
        """Every record from concurrent producers is flushed exactly once."""
        buffer = TelemetryBuffer(
            sender, BufferConfig(batch_size=7, flush_interval_ms=0, max_buffer_size=25)
        )

        async def producer(base: int) -> None:
            for i in range(50):
                await buffer.enqueue(_record(base + i))
                await buffer.maybe_flush()

        await asyncio.gather(*(producer(n * 1000) for n in range(10)))
        await buffer.force_flush()

        flushed = [r["i"] for batch in sender.batches for r in batch]
        assert sorted(flushed) == sorted(n * 1000 + i for n in range(10) for i in range(50))
        assert buffer.metrics.sent == 500
        assert buffer.metrics.enqueued == 500

    async def test_periodic_flusher(self, sender: FakeSender) -> None:
        """The background task flushes without any caller."""
        buffer = TelemetryBuffer(sender, BufferConfig(batch_size=1, flush_interval_ms=0))
        await buffer.start()
        try:
            await buffer.enqueue(_record(1))
            for _ in range(20):
                if sender.batches:
                    break
                await asyncio.sleep(0.05)
        finally:
            await buffer.stop()

        assert sender.batches == [[_record(1)]]

    async def test_stop_is_idempotent(self, sender: FakeSender) -> None:
        buffer = TelemetryBuffer(sender)
        await buffer.stop()
        await buffer.start()
        await buffer.stop()
        await buffer.stop()

    async def test_get_metrics(self, sender: FakeSender) -> None:
        buffer = TelemetryBuffer(sender, BufferConfig(batch_size=1, flush_interval_ms=0))
        await buffer.enqueue(_record(1))
        await buffer.maybe_flush()

        metrics = buffer.get_metrics()
        assert metrics["sent"] == 1
        assert metrics["flush_calls"] == 1
        assert metrics["pending"] == 0
        assert metrics["avg_batch_size"] == 1.0

    async def test_stop_waits_for_batch_in_flight(self) -> None:
        """Stopping the flusher mid-send still delivers and counts the batch."""
        delivered: list[list[dict[str, Any]]] = []

        async def slow_sender(batch: list[dict[str, Any]]) -> int:
            await asyncio.sleep(0.3)
            delivered.append(batch)
            return 200

        buffer = TelemetryBuffer(slow_sender, BufferConfig(batch_size=1, flush_interval_ms=0))
        await buffer.start()
        await buffer.enqueue(_record(1))

        await asyncio.sleep(0.1)
        await buffer.stop()
        await buffer.force_flush()

        assert delivered == [[_record(1)]]
        assert buffer.metrics.sent == 1
        assert buffer.metrics.failed == 0
        assert buffer.metrics.flush_calls == 1

    async def test_stop_wakes_idle_flusher(self, sender: FakeSender) -> None:
        """stop() does not wait out a long flush interval."""
        buffer = TelemetryBuffer(sender, BufferConfig(flush_interval_ms=600_000))
        await buffer.start()

        await asyncio.wait_for(buffer.stop(), timeout=1)

    async def test_interval_check_tolerates_float_clock(self, sender: FakeSender) -> None:
        """Two 50 ms steps from a non-integral start satisfy a 100 ms interval."""
        clock = FakeClock()
        clock.now = 1000.1
        buffer = TelemetryBuffer(
            sender, BufferConfig(batch_size=1, flush_interval_ms=100), clock=clock
        )
        await buffer.enqueue(_record(1))

        clock.advance_ms(50)
        assert await buffer.maybe_flush() is False
        clock.advance_ms(50)
        assert await buffer.maybe_flush() is True
