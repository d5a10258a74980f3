from __future__ import annotations

from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fuse_core.circuit_breaker.config import (
    DEFAULT_PEAK_END,
    DEFAULT_PEAK_START,
    CircuitBreakerConfig,
)
from fuse_core.circuit_breaker.threshold import ThresholdCalculator
from fuse_core.logging import get_log_level_value


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(
        env_prefix=prefix,
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def _check_percent(value: int | None, info: ValidationInfo) -> int | None:
    if value is not None and not 0 <= value <= 100:
        raise ValueError(f"{info.field_name} must be between 0 and 100")
    return value


def _check_hour(value: int | None, info: ValidationInfo) -> int | None:
    if value is not None and not 0 <= value <= 23:
        raise ValueError(f"{info.field_name} must be between 0 and 23")
    return value


class ServiceSettings(BaseModel):
    """Per-service overrides. Unset fields fall back to the global defaults."""

    threshold: int | None = None
    timeout: int | None = None
    min_requests: int | None = None
    peak_hours_threshold: int | None = None
    peak_hours_start: int | None = None
    peak_hours_end: int | None = None
    classifier: str | None = None

    @field_validator("threshold", "peak_hours_threshold")
    @classmethod
    def _validate_percent(cls, value: int | None, info: ValidationInfo) -> int | None:
        return _check_percent(value, info)

    @field_validator("peak_hours_start", "peak_hours_end")
    @classmethod
    def _validate_hour(cls, value: int | None, info: ValidationInfo) -> int | None:
        return _check_hour(value, info)

    @field_validator("timeout")
    @classmethod
    def _validate_timeout(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("timeout must be >= 0")
        return value

    @field_validator("min_requests")
    @classmethod
    def _validate_min_requests(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("min_requests must be >= 1")
        return value


class FuseSettings(BaseSettings):
    """Breaker settings shared by every worker of a deployment.

    Read from ``FUSE_*`` environment variables. Per-service overrides can be
    given as JSON in ``FUSE_SERVICES`` or as nested variables such as
    ``FUSE_SERVICES__STRIPE__THRESHOLD``.
    """

    model_config = prefixed_settings_config("FUSE_")

    enabled: bool = True
    default_threshold: int = 50
    default_timeout: int = 60
    default_min_requests: int = 10
    cache_prefix: str = "fuse"
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    peak_hours_timezone: str = "UTC"
    retry_after_seconds: float = 10.0
    services: dict[str, ServiceSettings] = {}

    @field_validator("default_threshold")
    @classmethod
    def _validate_default_threshold(cls, value: int, info: ValidationInfo) -> int:
        _check_percent(value, info)
        return value

    @field_validator("cache_prefix", mode="before")
    @classmethod
    def _validate_cache_prefix(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError("cache_prefix must be non-empty")
        return normalized

    @model_validator(mode="after")
    def _validate_fuse_settings(self) -> FuseSettings:
        if self.default_timeout < 0:
            raise ValueError("default_timeout must be >= 0")
        if self.default_min_requests < 1:
            raise ValueError("default_min_requests must be >= 1")
        if self.retry_after_seconds < 0:
            raise ValueError("retry_after_seconds must be >= 0")
        get_log_level_value(self.log_level)
        try:
            ZoneInfo(self.peak_hours_timezone)
        except (KeyError, ValueError) as error:
            raise ValueError(
                f"unknown peak_hours_timezone {self.peak_hours_timezone!r}"
            ) from error
        return self

    def default_config(self) -> CircuitBreakerConfig:
        """Return the breaker configuration for unconfigured services."""
        return CircuitBreakerConfig(
            failure_threshold=self.default_threshold,
            timeout=self.default_timeout,
            min_requests=self.default_min_requests,
        )

    def breaker_config(self, service: str) -> CircuitBreakerConfig:
        """Resolve ``service`` overrides onto the global defaults."""
        overrides = self.services.get(service)
        if overrides is None:
            return self.default_config()

        def _pick(value: int | None, default: int) -> int:
            return default if value is None else value

        return CircuitBreakerConfig(
            failure_threshold=_pick(overrides.threshold, self.default_threshold),
            timeout=_pick(overrides.timeout, self.default_timeout),
            min_requests=_pick(overrides.min_requests, self.default_min_requests),
            peak_threshold=overrides.peak_hours_threshold,
            peak_start=_pick(overrides.peak_hours_start, DEFAULT_PEAK_START),
            peak_end=_pick(overrides.peak_hours_end, DEFAULT_PEAK_END),
        )

    def threshold_calculator(self) -> ThresholdCalculator:
        """Build a calculator covering every configured service."""
        return ThresholdCalculator(
            {name: self.breaker_config(name) for name in self.services},
            defaults=self.default_config(),
            tz=ZoneInfo(self.peak_hours_timezone),
        )
