"""Time-of-day aware failure thresholds."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime, tzinfo
from typing import Protocol

from fuse_core.circuit_breaker.config import CircuitBreakerConfig


class ThresholdPolicy(Protocol):
    """Policy returning the failure rate percentage in effect for a service."""

    def effective_threshold(self, service: str, now: datetime) -> int:
        """Return the threshold for ``service`` at instant ``now``."""


class ThresholdCalculator:
    """Pick the peak-hours or regular threshold for each configured service.

    Services missing from ``services`` fall back to ``defaults`` without any
    peak adjustment. Hours are read in ``tz`` so operators can express peak
    windows in local time.
    """

    def __init__(
        self,
        services: Mapping[str, CircuitBreakerConfig],
        *,
        defaults: CircuitBreakerConfig | None = None,
        tz: tzinfo = UTC,
    ) -> None:
        self._services = dict(services)
        self._defaults = CircuitBreakerConfig() if defaults is None else defaults
        self._tz = tz

    def _hour(self, now: datetime) -> int:
        return now.astimezone(self._tz).hour

    def effective_threshold(self, service: str, now: datetime) -> int:
        """Return the threshold for ``service`` at ``now``."""
        config = self._services.get(service)
        if config is None:
            return self._defaults.failure_threshold
        if config.is_peak_hour(self._hour(now)) and config.peak_threshold is not None:
            return config.peak_threshold
        return config.failure_threshold

    def describe(self, service: str, now: datetime) -> dict[str, int | bool]:
        """Summarize the settings that apply to ``service`` at ``now``."""
        config = self._services.get(service, self._defaults)
        return {
            "threshold": self.effective_threshold(service, now),
            "timeout": config.timeout,
            "min_requests": config.min_requests,
            "is_peak_hours": config.is_peak_hour(self._hour(now)),
        }
