"""Core circuit breaker implementation.

Breaker objects hold no mutable state of their own. Everything lives in the
shared store under ``<prefix>:<service>:<suffix>`` keys so that any number of
worker processes can build a breaker per call and still agree on one circuit.

State writes go through a guarded transition: take the short ``transition``
lease or give up, re-read the state while holding it, write, release, then
notify. Losing the lease is not an error; another worker is already making the
same decision. The re-read makes racing winners idempotent, so each logical
transition notifies exactly once.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from fuse_core.circuit_breaker.classifier import (
    DefaultFailureClassifier,
    FailureClassifier,
    ensure_classifier,
)
from fuse_core.circuit_breaker.config import CircuitBreakerConfig
from fuse_core.circuit_breaker.exceptions import ConfigurationError
from fuse_core.circuit_breaker.metrics import BreakerNotifier
from fuse_core.circuit_breaker.state import BreakerStats, CircuitState
from fuse_core.circuit_breaker.storage import AbstractBreakerStore, Lease
from fuse_core.circuit_breaker.threshold import ThresholdCalculator, ThresholdPolicy
from fuse_core.logging import (
    StructuredLogger,
    get_logger,
    log_debug,
    log_exception,
    log_info,
)

WINDOW_TTL_SECONDS = 120
LEASE_TTL_SECONDS = 5
WINDOW_FORMAT = "%Y%m%d%H%M"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CircuitBreaker:
    """Closed/open/half-open state machine for one protected service."""

    def __init__(
        self,
        service: str,
        *,
        store: AbstractBreakerStore,
        config: CircuitBreakerConfig | None = None,
        classifier: object | None = None,
        threshold_calculator: ThresholdPolicy | None = None,
        notifiers: Sequence[BreakerNotifier] | None = None,
        prefix: str = "fuse",
        logger: StructuredLogger | None = None,
    ) -> None:
        """Build a breaker bound to ``service``.

        Args:
            service: Name of the protected dependency; namespaces all keys.
            store: Shared store holding state, counters and leases.
            config: Resolved breaker settings. Defaults to
                ``CircuitBreakerConfig()``.
            classifier: Failure classifier. Defaults to
                ``DefaultFailureClassifier``.
            threshold_calculator: Policy for the threshold in effect. Defaults
                to a calculator built from ``config``.
            notifiers: Sinks called once per confirmed transition.
            prefix: Key namespace shared by every breaker of a deployment.
            logger: Structured logger. Defaults to a structlog logger.

        Raises:
            ConfigurationError: When ``classifier`` does not implement
                ``FailureClassifier``.
        """
        self.service = service
        self.config = CircuitBreakerConfig() if config is None else config
        self._store = store
        self._classifier: FailureClassifier = ensure_classifier(
            DefaultFailureClassifier() if classifier is None else classifier
        )
        self._thresholds: ThresholdPolicy = (
            ThresholdCalculator({service: self.config})
            if threshold_calculator is None
            else threshold_calculator
        )
        self._notifiers = tuple(notifiers) if notifiers is not None else ()
        self._prefix = prefix
        self._logger = get_logger(__name__) if logger is None else logger

    def _key(self, suffix: str) -> str:
        return f"{self._prefix}:{self.service}:{suffix}"

    @staticmethod
    def _window(now: datetime) -> str:
        return now.strftime(WINDOW_FORMAT)

    def _lease(self, name: str) -> Lease:
        return self._store.lock(self._key(name), LEASE_TTL_SECONDS)

    def _threshold(self, now: datetime) -> int:
        try:
            return self._thresholds.effective_threshold(self.service, now)
        except Exception as exc:
            raise ConfigurationError(
                f"threshold policy failed for service {self.service!r}"
            ) from exc

    def _should_count(self, error: BaseException) -> bool:
        try:
            return bool(self._classifier.should_count(error))
        except Exception as exc:
            raise ConfigurationError(
                f"failure classifier failed for service {self.service!r}"
            ) from exc

    async def get_state(self) -> CircuitState:
        """Return the stored state; a missing key means ``CLOSED``."""
        raw = await self._store.get(self._key("state"))
        if raw is None:
            return CircuitState.CLOSED
        return CircuitState(raw)

    async def is_closed(self) -> bool:
        """Return whether the circuit is ``CLOSED``."""
        return await self.get_state() == CircuitState.CLOSED

    async def is_half_open(self) -> bool:
        """Return whether the circuit is ``HALF_OPEN``."""
        return await self.get_state() == CircuitState.HALF_OPEN

    async def _recovery_due(self, now: datetime) -> bool:
        # A missing opened_at cannot hold the circuit open forever.
        opened_at = await self._store.get(self._key("opened_at"))
        if opened_at is None:
            return True
        return int(now.timestamp()) - int(opened_at) >= self.config.timeout

    async def is_open(self) -> bool:
        """Return whether the circuit is blocking calls.

        An ``OPEN`` circuit whose timeout has elapsed is moved to ``HALF_OPEN``
        and reported as not blocking.
        """
        if await self.get_state() != CircuitState.OPEN:
            return False
        if await self._recovery_due(_utcnow()):
            await self._transition_to_half_open()
            return False
        return True

    async def is_available(self) -> bool:
        """Return whether the caller may invoke the dependency now.

        ``CLOSED`` always admits. ``OPEN`` admits nothing until its timeout
        elapses, at which point the circuit moves to ``HALF_OPEN``. While
        ``HALF_OPEN`` only the caller holding the ``probe`` lease is admitted.
        """
        state = await self.get_state()
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.OPEN:
            if not await self._recovery_due(_utcnow()):
                return False
            await self._transition_to_half_open()
        return await self._lease("probe").try_acquire()

    async def record_success(self) -> None:
        """Record a successful call, closing a ``HALF_OPEN`` circuit."""
        await self._store.increment(
            self._key(f"attempts:{self._window(_utcnow())}"), WINDOW_TTL_SECONDS
        )
        if await self.get_state() == CircuitState.HALF_OPEN:
            await self._transition_to_closed()
        await self._lease("probe").force_release()

    async def record_failure(self, error: BaseException | None = None) -> None:
        """Record a failed call and trip the circuit when the threshold is hit.

        Args:
            error: The error raised by the dependency. When given, the
                classifier may decide it does not count as a failure, in which
                case only the attempt is recorded.

        Raises:
            ConfigurationError: When the classifier or threshold policy fails.
        """
        now = _utcnow()
        window = self._window(now)

        if error is not None and not self._should_count(error):
            await self._store.increment(
                self._key(f"attempts:{window}"), WINDOW_TTL_SECONDS
            )
            if await self.get_state() == CircuitState.HALF_OPEN:
                await self._lease("probe").force_release()
            return

        if await self.get_state() == CircuitState.HALF_OPEN:
            await self._transition_to_open(100.0, 1, 1)
            await self._lease("probe").force_release()
            return

        attempts = await self._store.increment(
            self._key(f"attempts:{window}"), WINDOW_TTL_SECONDS
        )
        failures = await self._store.increment(
            self._key(f"failures:{window}"), WINDOW_TTL_SECONDS
        )
        # Concurrent increments can interleave between the two counters.
        attempts = max(attempts, failures)
        failure_rate = failures * 100 / attempts

        if attempts >= self.config.min_requests and failure_rate >= self._threshold(
            now
        ):
            await self._transition_to_open(failure_rate, attempts, failures)

    async def get_stats(self) -> BreakerStats:
        """Return a read-only snapshot of the current window and state."""
        now = _utcnow()
        window = self._window(now)
        attempts = int(await self._store.get(self._key(f"attempts:{window}")) or 0)
        failures = int(await self._store.get(self._key(f"failures:{window}")) or 0)
        raw_opened_at = await self._store.get(self._key("opened_at"))
        opened_at = None if raw_opened_at is None else int(raw_opened_at)
        state = await self.get_state()

        return BreakerStats(
            state=state,
            attempts=attempts,
            failures=failures,
            failure_rate=round(failures * 100 / attempts, 1) if attempts else 0.0,
            opened_at=opened_at,
            recovery_at=None if opened_at is None else opened_at + self.config.timeout,
            timeout=self.config.timeout,
            threshold=self._threshold(now),
            min_requests=self.config.min_requests,
        )

    async def reset(self) -> None:
        """Administratively return to ``CLOSED`` without notifying.

        Clears state, ``opened_at`` and the current window's counters and
        force-releases both leases.
        """
        window = self._window(_utcnow())
        for suffix in (
            "state",
            "opened_at",
            f"attempts:{window}",
            f"failures:{window}",
        ):
            await self._store.forget(self._key(suffix))
        await self._lease("probe").force_release()
        await self._lease("transition").force_release()
        log_info(self._logger, "circuit_reset", service=self.service)

    async def force_open(self) -> None:
        """Open the circuit now, notifying with the current window's counters."""
        stats = await self.get_stats()
        await self._transition_to_open(
            stats.failure_rate, stats.attempts, stats.failures
        )

    async def force_close(self) -> None:
        """Close the circuit now and free the probe slot."""
        await self._transition_to_closed()
        await self._lease("probe").force_release()

    async def _transition(self, target: CircuitState) -> bool:
        lease = self._lease("transition")
        if not await lease.try_acquire():
            log_debug(
                self._logger,
                "circuit_transition_contended",
                service=self.service,
                target=str(target),
            )
            return False

        try:
            if await self.get_state() == target:
                return False
            if target == CircuitState.OPEN:
                await self._store.put(
                    self._key("opened_at"), int(_utcnow().timestamp())
                )
                await self._store.put(self._key("state"), str(target))
            elif target == CircuitState.CLOSED:
                await self._store.put(self._key("state"), str(target))
                await self._store.forget(self._key("opened_at"))
            else:
                await self._store.put(self._key("state"), str(target))
        finally:
            await lease.release()
        return True

    async def _transition_to_open(
        self, failure_rate: float, attempts: int, failures: int
    ) -> None:
        if not await self._transition(CircuitState.OPEN):
            return
        log_info(
            self._logger,
            "circuit_opened",
            service=self.service,
            failure_rate=round(failure_rate, 1),
            attempts=attempts,
            failures=failures,
        )
        for notifier in self._notifiers:
            try:
                await notifier.on_opened(self.service, failure_rate, attempts, failures)
            except Exception:
                self._log_notifier_failure(notifier)

    async def _transition_to_half_open(self) -> None:
        if not await self._transition(CircuitState.HALF_OPEN):
            return
        log_info(self._logger, "circuit_half_open", service=self.service)
        for notifier in self._notifiers:
            try:
                await notifier.on_half_open(self.service)
            except Exception:
                self._log_notifier_failure(notifier)

    async def _transition_to_closed(self) -> None:
        if not await self._transition(CircuitState.CLOSED):
            return
        log_info(self._logger, "circuit_closed", service=self.service)
        for notifier in self._notifiers:
            try:
                await notifier.on_closed(self.service)
            except Exception:
                self._log_notifier_failure(notifier)

    def _log_notifier_failure(self, notifier: BreakerNotifier) -> None:
        log_exception(
            self._logger,
            "circuit_notifier_failed",
            service=self.service,
            notifier=type(notifier).__qualname__,
        )
