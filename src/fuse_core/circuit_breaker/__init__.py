"""Distributed circuit breaker for workers sharing a key-value store.

Key behavior notes:
  - All state lives in the shared store. ``CLOSED``, ``OPEN`` and ``HALF_OPEN``
    are persisted per service, so every worker sees the same circuit.
  - Failures are counted in fixed one-minute windows. Only the current window
    is evaluated, which can under- or over-trip across a minute boundary.
  - ``OPEN`` turns into ``HALF_OPEN`` lazily, on the next admission check after
    the timeout. Without traffic a circuit does not heal.
  - While ``HALF_OPEN`` a single ``probe`` lease admits one caller at a time.
  - Errors the classifier excludes (429/401/403 by default) count as attempts
    but never as failures.
"""

from fuse_core.circuit_breaker.breaker import CircuitBreaker
from fuse_core.circuit_breaker.classifier import (
    DefaultFailureClassifier,
    FailureClassifier,
    ensure_classifier,
)
from fuse_core.circuit_breaker.config import CircuitBreakerConfig
from fuse_core.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
    ConfigurationError,
)
from fuse_core.circuit_breaker.guard import CircuitGuard
from fuse_core.circuit_breaker.metrics import BreakerNotifier, StateHistoryNotifier
from fuse_core.circuit_breaker.registry import CircuitBreakerRegistry
from fuse_core.circuit_breaker.state import BreakerStats, CircuitState
from fuse_core.circuit_breaker.storage import (
    AbstractBreakerStore,
    InMemoryBreakerStore,
    Lease,
    RedisBreakerStore,
)
from fuse_core.circuit_breaker.threshold import ThresholdCalculator, ThresholdPolicy

__all__ = [
    "AbstractBreakerStore",
    "BreakerNotifier",
    "BreakerStats",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerRegistry",
    "CircuitGuard",
    "CircuitOpenError",
    "CircuitState",
    "ConfigurationError",
    "DefaultFailureClassifier",
    "FailureClassifier",
    "InMemoryBreakerStore",
    "Lease",
    "RedisBreakerStore",
    "StateHistoryNotifier",
    "ThresholdCalculator",
    "ThresholdPolicy",
    "ensure_classifier",
]
