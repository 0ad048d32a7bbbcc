"""tracebench: HTTP load generation with correlated request telemetry.

Drives concurrent virtual clients against a target endpoint, tags every
request with a correlation id and W3C traceparent, streams sampled latency
records to an ingestion endpoint and keeps the slowest requests in memory.
"""

__version__ = "0.1.0"
