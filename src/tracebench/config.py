"""Run configuration.

Values come from the environment (the variable names match the classic k6
scripts: ``TARGET_URL``, ``VUS``, ``DURATION``...), an optional ``.env`` file,
or explicit overrides passed to :meth:`RunConfig.load`. The resulting
snapshot is frozen for the lifetime of a run.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tracebench.errors import ConfigurationError

DEFAULT_INGESTION_URL = "https://dc.services.visualstudio.com/v2/track"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | float | int) -> float:
    """Parse a k6-style duration (``30s``, ``1m30s``, ``500ms``) into seconds.

    Bare numbers are taken as seconds.
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip().lower()
        if not text:
            raise ValueError("duration must not be empty")
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    raise ValueError(f"invalid duration: {value!r}") from None
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos != len(text):
                raise ValueError(f"invalid duration: {value!r}") from None
    if seconds <= 0:
        raise ValueError("duration must be positive")
    return seconds


class RunConfig(BaseSettings):
    """Immutable configuration snapshot for one load run."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    # Target
    target_url: str = Field(validation_alias="TARGET_URL")
    append_correlation_path: bool = Field(
        default=False, validation_alias="APPEND_CORRELATION_PATH"
    )
    request_timeout_s: float = Field(default=30.0, gt=0, validation_alias="REQUEST_TIMEOUT_S")

    # Load shape
    vus: int = Field(default=5, ge=1, validation_alias="VUS")
    duration_s: float = Field(default=30.0, validation_alias="DURATION")
    think_ms: int = Field(default=0, ge=0, validation_alias="THINK_MS")

    # Telemetry
    instrumentation_key: str | None = Field(default=None, validation_alias="APPINSIGHTS_IKEY")
    ingestion_url: str = Field(default=DEFAULT_INGESTION_URL, validation_alias="INGESTION_URL")
    ingestion_timeout_s: float = Field(
        default=10.0, gt=0, validation_alias="INGESTION_TIMEOUT_S"
    )
    batch_size: int = Field(default=1, ge=1, validation_alias="BATCH_SIZE")
    flush_interval_ms: int = Field(default=2000, ge=0, validation_alias="FLUSH_INTERVAL_MS")
    sampling: float = Field(default=1.0, ge=0.0, le=1.0, validation_alias="SAMPLING")
    max_buffer: int = Field(default=5000, ge=1, validation_alias="MAX_BUFFER")
    cloud_role: str = Field(default="tracebench-loadgen", validation_alias="CLOUD_ROLE")
    test_type: str = Field(default="tracebench", validation_alias="TEST_TYPE")

    # Slow-request capture
    top_n: int = Field(default=5, ge=1, validation_alias="TOP_N")
    max_track: int = Field(default=200, ge=1, validation_alias="MAX_TRACK")
    slow_ms: float = Field(default=0.0, ge=0.0, validation_alias="SLOW_MS")
    log_all: bool = Field(default=False, validation_alias="LOG_ALL")

    # Output
    output_dir: str = Field(default=".", validation_alias="OUTPUT_DIR")
    pretty_summary: bool = Field(default=False, validation_alias="PRETTY_SUMMARY")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON")

    @field_validator("duration_s", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("target_url")
    @classmethod
    def _check_target_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("TARGET_URL must be an http(s) URL")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def _check_ingestion(self) -> "RunConfig":
        if self.instrumentation_key is not None and not self.instrumentation_key.strip():
            raise ValueError("APPINSIGHTS_IKEY must not be blank")
        return self

    @property
    def telemetry_enabled(self) -> bool:
        """Telemetry is shipped only when an instrumentation key is configured."""
        return self.instrumentation_key is not None

    @property
    def track_capacity(self) -> int:
        """Capacity of the slow-request tracker."""
        return max(self.max_track, self.top_n)

    @classmethod
    def load(cls, **overrides: Any) -> "RunConfig":
        """Build a config from the environment plus explicit overrides.

        Overrides use field names; ``None`` values are ignored so CLI options
        left unset fall through to the environment.

        Raises:
            ConfigurationError: If a required value is missing or invalid.
        """
        kwargs: dict[str, Any] = {}
        for name, value in overrides.items():
            if value is None:
                continue
            field = cls.model_fields.get(name)
            if field is None:
                raise ConfigurationError(f"Unknown configuration option: {name}")
            kwargs[str(field.validation_alias or name)] = value

        try:
            return cls(**kwargs)
        except ValidationError as e:
            problems = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"]) or "config"
                problems.append(f"{loc}: {error['msg']}")
            raise ConfigurationError("; ".join(problems)) from e
