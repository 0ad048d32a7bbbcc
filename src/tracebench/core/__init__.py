"""Core request-correlation and aggregation primitives."""

from tracebench.core.correlation import CorrelationGenerator, make_traceparent
from tracebench.core.models import TRANSPORT_FAILURE, Observation, SlowEntry
from tracebench.core.sampling import SamplingGate
from tracebench.core.topk import TopKTracker

__all__ = [
    "CorrelationGenerator",
    "make_traceparent",
    "Observation",
    "SlowEntry",
    "TRANSPORT_FAILURE",
    "SamplingGate",
    "TopKTracker",
]
