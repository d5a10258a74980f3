"""Resolved per-service breaker configuration."""

from dataclasses import dataclass

DEFAULT_PEAK_START = 9
DEFAULT_PEAK_END = 17


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values for one service.

    Attributes:
        failure_threshold: Failure rate percentage (0-100) that trips the circuit.
        timeout: Seconds to wait while ``OPEN`` before allowing a probe.
        min_requests: Attempts in the current window before the threshold
            is evaluated at all.
        peak_threshold: Optional threshold used between ``peak_start`` and
            ``peak_end``.
        peak_start: First hour of day (inclusive) of the peak window.
        peak_end: Last hour of day (inclusive) of the peak window.
    """

    failure_threshold: int = 50
    timeout: int = 60
    min_requests: int = 10
    peak_threshold: int | None = None
    peak_start: int = DEFAULT_PEAK_START
    peak_end: int = DEFAULT_PEAK_END

    def __post_init__(self) -> None:
        if not 0 <= self.failure_threshold <= 100:
            raise ValueError("failure_threshold must be between 0 and 100")
        if self.peak_threshold is not None and not 0 <= self.peak_threshold <= 100:
            raise ValueError("peak_threshold must be between 0 and 100")
        if self.timeout < 0:
            raise ValueError("timeout must be >= 0")
        if self.min_requests < 1:
            raise ValueError("min_requests must be >= 1")
        for name in ("peak_start", "peak_end"):
            if not 0 <= getattr(self, name) <= 23:
                raise ValueError(f"{name} must be between 0 and 23")

    def is_peak_hour(self, hour: int) -> bool:
        """Return whether ``hour`` falls inside the inclusive peak window."""
        return self.peak_start <= hour <= self.peak_end
