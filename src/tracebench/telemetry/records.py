"""Telemetry record construction.

Records use the Application Insights ``MessageData`` envelope accepted by the
public track endpoint, so results can be queried with

    traces | where customDimensions.testType == "<test type>"
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from tracebench import __version__
from tracebench.core.models import Observation

TelemetryRecord = dict[str, Any]

RECORD_NAME = "Microsoft.ApplicationInsights.Message"
SDK_VERSION = f"tracebench:{__version__}"


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_telemetry_record(
    observation: Observation,
    *,
    instrumentation_key: str,
    cloud_role: str,
    sampling: float,
    test_type: str,
    time: str | None = None,
) -> TelemetryRecord:
    """Serialize an observation plus static tags into one telemetry record.

    Every property value is a string; the ingestion schema does not accept
    numbers inside ``properties``.
    """
    corr = observation.correlation_id
    properties = {
        "testType": test_type,
        "correlationId": corr,
        "traceparent": observation.traceparent,
        "url": observation.url,
        "status": str(observation.status),
        "durationMs": str(observation.duration_ms),
        "headersMs": str(observation.headers_ms),
        "bodyMs": str(observation.body_ms),
        "vu": str(observation.vu),
        "iteration": str(observation.iteration),
        "startTime": observation.start_time,
        "requestBodyBytes": str(observation.request_body_bytes),
        "sampling": str(sampling),
    }
    if observation.timing_drift_ms is not None:
        properties["timingDriftMs"] = str(observation.timing_drift_ms)
    if observation.error:
        properties["error"] = observation.error

    return {
        "name": RECORD_NAME,
        "time": time or utc_now_iso(),
        "iKey": instrumentation_key,
        "tags": {
            "ai.cloud.role": cloud_role,
            "ai.operation.id": corr,
            "ai.operation.parentId": corr.replace("-", "")[:16],
            "ai.internal.sdkVersion": SDK_VERSION,
        },
        "data": {
            "baseType": "MessageData",
            "baseData": {
                "message": f"tracebench request {corr}",
                "severityLevel": 1,
                "properties": properties,
            },
        },
    }
