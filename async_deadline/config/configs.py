from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from async_deadline.core.clock import parse_duration
from async_deadline.errors.errors import ConfigurationError

"""
Here, we collect the clock configs. Duration fields accept a timedelta, a number of
seconds, or a duration string such as "500ms" / "2s".
"""

_LOGGER = logging.getLogger(__name__)


def _coerce_duration(value: Any) -> Any:
    if isinstance(value, str):
        return parse_duration(value)
    return value


# --- Clock Section ---


class VirtualClockConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_timeout: timedelta = timedelta(milliseconds=500)  # real-time budget for run()
    yield_count: int = 20  # event loop passes per yield between releases
    minimum_resolution: timedelta = timedelta(0)

    @field_validator("run_timeout", "minimum_resolution", mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        return _coerce_duration(value)

    @field_validator("run_timeout")
    @classmethod
    def _check_run_timeout(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("run_timeout must be positive")
        return value

    @field_validator("yield_count")
    @classmethod
    def _check_yield_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("yield_count must be >= 1")
        return value

    @field_validator("minimum_resolution")
    @classmethod
    def _check_resolution(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("minimum_resolution must be non-negative")
        return value


class MonotonicClockConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    sleep_chunk: timedelta = timedelta(milliseconds=500)

    @field_validator("sleep_chunk", mode="before")
    @classmethod
    def _parse_chunk(cls, value: Any) -> Any:
        return _coerce_duration(value)

    @field_validator("sleep_chunk")
    @classmethod
    def _check_chunk(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("sleep_chunk must be positive")
        return value


# --- Environment ---

_VIRTUAL_CLOCK_ENV: dict[str, str] = {
    "run_timeout": "RUN_TIMEOUT",
    "yield_count": "YIELD_COUNT",
    "minimum_resolution": "MINIMUM_RESOLUTION",
}


def load_virtual_clock_config(
    prefix: str = "DEADLINE_", environ: Optional[Mapping[str, str]] = None
) -> VirtualClockConfig:
    """
    Build a VirtualClockConfig from environment variables, e.g. DEADLINE_RUN_TIMEOUT=2s.

    Variables that are not set keep the model defaults. Raises ConfigurationError
    naming the first invalid field.
    """
    if not prefix:
        raise ValueError("Environment prefix must be a non-empty string")
    env = os.environ if environ is None else environ

    values: dict[str, str] = {}
    for field_name, suffix in _VIRTUAL_CLOCK_ENV.items():
        env_var = f"{prefix}{suffix}"
        if env_var in env:
            values[field_name] = env[env_var]
            _LOGGER.debug(
                "clock_config_resolved",
                extra={"event": "clock_config_resolved", "field": field_name, "source": "env"},
            )

    try:
        return VirtualClockConfig(**values)
    except ValidationError as exc:
        error = exc.errors()[0]
        field_name = str(error["loc"][0]) if error["loc"] else None
        raise ConfigurationError(
            f"Invalid virtual clock configuration: {error['msg']}",
            field=field_name,
            value=values.get(field_name) if field_name else None,
            component="load_virtual_clock_config",
        ) from exc
