"""Observability hooks for circuit breakers."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Protocol

from fuse_core.circuit_breaker.state import CircuitState
from fuse_core.circuit_breaker.storage import AbstractBreakerStore

HISTORY_LIMIT = 20
HISTORY_TTL_SECONDS = 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BreakerNotifier(Protocol):
    """Sink for confirmed breaker state transitions.

    Notes:
        Each method is called at most once per logical transition, after the
        new state has been written. Exceptions raised here are logged by the
        breaker and never reach the protected caller.
    """

    async def on_opened(
        self, service: str, failure_rate: float, attempts: int, failures: int
    ) -> None:
        """Handle a transition to ``OPEN``."""

    async def on_half_open(self, service: str) -> None:
        """Handle a transition to ``HALF_OPEN``."""

    async def on_closed(self, service: str) -> None:
        """Handle a transition to ``CLOSED``."""


class StateHistoryNotifier(BreakerNotifier):
    """Keep a short rolling history of state changes per service in the store.

    The history is shared by every worker writing to the same store and feeds
    status dashboards. Only the last ``HISTORY_LIMIT`` changes are kept, for
    ``HISTORY_TTL_SECONDS``.
    """

    def __init__(self, store: AbstractBreakerStore, *, prefix: str = "fuse") -> None:
        self._store = store
        self._prefix = prefix

    def _last_state_key(self, service: str) -> str:
        return f"{self._prefix}:status:last_state:{service}"

    def _history_key(self, service: str) -> str:
        return f"{self._prefix}:status:history:{service}"

    async def track(self, service: str, current: CircuitState | str) -> None:
        """Append a history entry when ``current`` differs from the last state.

        A service with no recorded state is treated as ``CLOSED``.
        """
        current_state = str(current)
        last_state = await self._store.get(self._last_state_key(service))
        if last_state is None:
            last_state = str(CircuitState.CLOSED)

        if last_state != current_state:
            history: list[dict[str, Any]] = list(
                await self._store.get(self._history_key(service)) or []
            )
            history.append(
                {
                    "from": last_state,
                    "to": current_state,
                    "time": _utcnow().strftime("%H:%M:%S"),
                }
            )
            await self._store.put(
                self._history_key(service),
                history[-HISTORY_LIMIT:],
                HISTORY_TTL_SECONDS,
            )

        await self._store.put(
            self._last_state_key(service), current_state, HISTORY_TTL_SECONDS
        )

    async def history(self, service: str) -> list[dict[str, Any]]:
        """Return recorded transitions for ``service``, oldest first."""
        return list(await self._store.get(self._history_key(service)) or [])

    async def on_opened(
        self, service: str, failure_rate: float, attempts: int, failures: int
    ) -> None:
        """Record a change to ``OPEN``."""
        _ = (failure_rate, attempts, failures)
        await self.track(service, CircuitState.OPEN)

    async def on_half_open(self, service: str) -> None:
        """Record a change to ``HALF_OPEN``."""
        await self.track(service, CircuitState.HALF_OPEN)

    async def on_closed(self, service: str) -> None:
        """Record a change to ``CLOSED``."""
        await self.track(service, CircuitState.CLOSED)
