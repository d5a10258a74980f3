"""Circuit breaker state primitives."""

from dataclasses import asdict, dataclass
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values as persisted in the shared store."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerStats:
    """Point-in-time view of one service's breaker for dashboards and tooling.

    Attributes:
        state: Persisted breaker state.
        attempts: Attempts recorded in the current one-minute window.
        failures: Counted failures in the current one-minute window.
        failure_rate: ``failures / attempts * 100`` rounded to one decimal.
        opened_at: Epoch seconds when the circuit last entered ``OPEN``.
        recovery_at: Epoch seconds when an ``OPEN`` circuit becomes probe-able.
        timeout: Seconds an ``OPEN`` circuit blocks before ``HALF_OPEN``.
        threshold: Failure rate percentage currently in effect.
        min_requests: Attempts required before the threshold is evaluated.
    """

    state: CircuitState
    attempts: int
    failures: int
    failure_rate: float
    opened_at: int | None
    recovery_at: int | None
    timeout: int
    threshold: int
    min_requests: int

    def as_dict(self) -> dict[str, object]:
        """Return a JSON-friendly mapping of the snapshot."""
        data = asdict(self)
        data["state"] = str(self.state)
        return data
