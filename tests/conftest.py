"""Global pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from tracebench.config import RunConfig

RUN_ENV_VARS = [
    str(field.validation_alias) for field in RunConfig.model_fields.values()
]


@pytest.fixture(autouse=True)
def clean_run_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell environment out of every test."""
    for name in RUN_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_config():
    """Build a RunConfig from field-name overrides with test-friendly defaults."""

    def _make(**overrides) -> RunConfig:
        values = {
            "target_url": "http://target.local/tx",
            "vus": 1,
            "duration_s": "1s",
        }
        values.update(overrides)
        return RunConfig.load(**values)

    return _make
