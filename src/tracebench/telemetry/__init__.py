"""Telemetry pipeline: record construction, buffering and ingestion."""

from tracebench.telemetry.buffer import BatchSender, BufferConfig, BufferMetrics, TelemetryBuffer
from tracebench.telemetry.ingestion import IngestionClient
from tracebench.telemetry.records import TelemetryRecord, make_telemetry_record

__all__ = [
    "BatchSender",
    "BufferConfig",
    "BufferMetrics",
    "TelemetryBuffer",
    "IngestionClient",
    "TelemetryRecord",
    "make_telemetry_record",
]
