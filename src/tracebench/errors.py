"""Exception hierarchy for tracebench.

Per-request failures never surface as exceptions; they are recorded on the
observation. Only configuration problems propagate to the caller.
"""

from __future__ import annotations


class TracebenchError(Exception):
    """Base exception for tracebench errors."""


class ConfigurationError(TracebenchError):
    """Run configuration is missing or invalid. Fatal at startup."""


class IngestionError(TracebenchError):
    """Transport failure while submitting a telemetry batch."""

    def __init__(self, message: str, item_count: int = 0) -> None:
        self.item_count = item_count
        super().__init__(message)
