"""Protect one unit of work (a consumed message, a job) with a breaker."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from fuse_core.circuit_breaker.exceptions import CircuitOpenError
from fuse_core.circuit_breaker.registry import CircuitBreakerRegistry

T = TypeVar("T")
P = ParamSpec("P")


class CircuitGuard:
    """Admission check, call and outcome reporting for one service.

    Rejected calls raise ``CircuitOpenError`` carrying ``retry_after`` so the
    consumer can redeliver the message later instead of failing it. Errors from
    the protected call are recorded and re-raised unchanged.
    """

    def __init__(
        self,
        registry: CircuitBreakerRegistry,
        service: str,
        *,
        enabled: bool | None = None,
    ) -> None:
        """Bind a guard to ``service``.

        Args:
            registry: Registry building breakers for the deployment.
            service: Name of the protected dependency.
            enabled: Explicit on/off switch. ``None`` reads the registry's
                runtime toggle on every call.
        """
        self._registry = registry
        self.service = service
        self._enabled = enabled

    async def _is_enabled(self) -> bool:
        if self._enabled is not None:
            return self._enabled
        return await self._registry.is_enabled()

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        When the guard is disabled the callable runs unprotected.

        Returns:
            The result of ``func``.

        Raises:
            CircuitOpenError: When the breaker does not admit the call.
            Exception: The original exception from ``func``.
        """
        if not await self._is_enabled():
            return await func(*args, **kwargs)

        breaker = self._registry.breaker(self.service)
        if not await breaker.is_available():
            raise CircuitOpenError(
                self.service, retry_after=self._registry.settings.retry_after_seconds
            )

        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            await breaker.record_failure(exc)
            raise
        await breaker.record_success()
        return result
