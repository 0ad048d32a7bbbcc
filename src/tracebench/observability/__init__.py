"""Observability helpers: structured logging with correlation context."""

from tracebench.observability.logging import (
    LogContext,
    configure_logging,
    correlation_id_var,
    current_context,
    vu_var,
)

__all__ = [
    "configure_logging",
    "current_context",
    "LogContext",
    "correlation_id_var",
    "vu_var",
]
