"""Structured logging for load runs.

Provides:
- JSON-formatted logs for log aggregation systems
- Correlation id and virtual-client propagation through context variables
- A compact console format for interactive runs

Usage:
    from tracebench.observability.logging import configure_logging

    configure_logging(json_format=False, level="INFO")

    logger = logging.getLogger(__name__)
    with LogContext(correlation_id=corr, vu=3):
        logger.info("Request sent")  # Includes correlation_id and vu
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Context bound by the coordinator (vu) and the driver (correlation id)
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)
vu_var: contextvars.ContextVar[int] = contextvars.ContextVar("vu", default=0)

# Attributes every LogRecord has; anything else was passed via ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def current_context() -> dict[str, Any]:
    """The non-empty correlation fields for the running task."""
    context: dict[str, Any] = {}
    vu = vu_var.get()
    if vu:
        context["vu"] = vu
    correlation_id = correlation_id_var.get()
    if correlation_id:
        context["correlation_id"] = correlation_id
    return context


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Output format:
    {
        "timestamp": "2026-01-10T12:34:56.789000+00:00",
        "level": "WARNING",
        "logger": "tracebench.telemetry.buffer",
        "message": "Ingestion failed status=500 items=3",
        "vu": 3,
        "correlation_id": "0af76519-16cd-43dd-8448-eb211c80319c"
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(current_context())

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        log_data.update(extra)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter.

    Output format:
    2026-01-10 12:34:56 | INFO     | tracebench.runner | Run started | vu=3 corr=0af76519
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"

        parts = [self.formatTime(record, self.datefmt), level, record.name, record.getMessage()]

        context = current_context()
        tags = []
        if "vu" in context:
            tags.append(f"vu={context['vu']}")
        if "correlation_id" in context:
            tags.append(f"corr={context['correlation_id'][:8]}")
        if tags:
            parts.append(" ".join(tags))

        line = " | ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    json_format: bool = False,
    level: str = "INFO",
    use_colors: bool = True,
) -> None:
    """Configure process-wide logging.

    Args:
        json_format: Emit one JSON object per line
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_colors: Use ANSI colors in console format
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else ConsoleFormatter(use_colors))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level.upper())

    # One line per request from the HTTP client would drown the run output
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


class LogContext:
    """Binds the correlation id and/or VU number for the enclosed block.

    Usage:
        with LogContext(correlation_id=corr, vu=2):
            logger.info("Dispatching request")
    """

    def __init__(self, correlation_id: str | None = None, vu: int | None = None) -> None:
        self.correlation_id = correlation_id
        self.vu = vu
        self._resets: list[Any] = []

    def __enter__(self) -> "LogContext":
        if self.correlation_id is not None:
            token = correlation_id_var.set(self.correlation_id)
            self._resets.append(lambda: correlation_id_var.reset(token))
        if self.vu is not None:
            vu_token = vu_var.set(self.vu)
            self._resets.append(lambda: vu_var.reset(vu_token))
        return self

    def __exit__(self, *args: Any) -> None:
        while self._resets:
            self._resets.pop()()
