"""Correlation id and W3C trace-context synthesis.

Every request carries an ``x-correlation-id`` and a ``traceparent`` derived
from it, so the target service and downstream telemetry can be joined on a
single id:

    corr        = 0af7651916cd43dd8448eb211c80319c (uuid4, dashed form on the wire)
    traceparent = 00-0af7651916cd43dd8448eb211c80319c-0af7651916cd43dd-01
"""

from __future__ import annotations

import string
import uuid

_HEX_DIGITS = frozenset(string.hexdigits)

TRACEPARENT_VERSION = "00"
TRACEPARENT_FLAGS = "01"


def make_traceparent(correlation_id: str) -> str:
    """Derive a traceparent header value from a correlation id.

    The id's hex digits form the 32 character trace-id (right padded with
    zeros, or truncated) and its first 16 hex digits the span-id.

    Raises:
        ValueError: If the id is not hexadecimal or too short for a span-id.
    """
    digest = correlation_id.replace("-", "").lower()
    if not digest or not set(digest) <= _HEX_DIGITS:
        raise ValueError(f"Correlation id is not hexadecimal: {correlation_id!r}")
    if len(digest) < 16:
        raise ValueError(f"Correlation id too short for a span id: {correlation_id!r}")

    trace_id = (digest + "0" * 32)[:32]
    span_id = digest[:16]
    return f"{TRACEPARENT_VERSION}-{trace_id}-{span_id}-{TRACEPARENT_FLAGS}"


class CorrelationGenerator:
    """Produces ``(correlation_id, traceparent)`` pairs, one per request."""

    def next(self) -> tuple[str, str]:
        correlation_id = str(uuid.uuid4())
        return correlation_id, make_traceparent(correlation_id)
