"""Wiring of settings, store, classifiers and notifiers into breakers.

Breakers are cheap and stateless, so the registry builds a fresh one per call
instead of caching instances. Everything long-lived (settings, store client,
classifier objects, notifiers) is injected once here.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

from fuse_core.circuit_breaker.breaker import CircuitBreaker
from fuse_core.circuit_breaker.classifier import (
    DefaultFailureClassifier,
    FailureClassifier,
    ensure_classifier,
)
from fuse_core.circuit_breaker.exceptions import ConfigurationError
from fuse_core.circuit_breaker.metrics import BreakerNotifier
from fuse_core.circuit_breaker.storage import AbstractBreakerStore, RedisBreakerStore
from fuse_core.logging import StructuredLogger, get_logger, log_info

if TYPE_CHECKING:
    from fuse_core.settings import FuseSettings

DEFAULT_CLASSIFIER = "default"


class CircuitBreakerRegistry:
    """Factory for per-service breakers sharing one store.

    Usage:
        registry = CircuitBreakerRegistry(settings, store, notifiers=[history])
        breaker = registry.breaker("stripe")
        if await breaker.is_available():
            ...

    Attributes:
        settings: Global and per-service breaker settings.
        store: Shared state store.
    """

    def __init__(
        self,
        settings: FuseSettings,
        store: AbstractBreakerStore,
        *,
        notifiers: Sequence[BreakerNotifier] | None = None,
        classifiers: Mapping[str, object] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Validate classifiers and service references up front.

        Args:
            settings: Breaker settings.
            store: Shared store used by every breaker built here.
            notifiers: Sinks attached to every breaker.
            classifiers: Classifier objects by name. ``"default"`` maps to
                ``DefaultFailureClassifier`` unless overridden.
            logger: Structured logger passed to every breaker.

        Raises:
            ConfigurationError: When a classifier does not implement the
                contract or a service names an unregistered classifier.
        """
        self.settings = settings
        self.store = store
        self._notifiers = tuple(notifiers) if notifiers is not None else ()
        self._logger = get_logger(__name__) if logger is None else logger
        self._thresholds = settings.threshold_calculator()

        registered: dict[str, object] = {DEFAULT_CLASSIFIER: DefaultFailureClassifier()}
        registered.update(classifiers or {})
        self._classifiers: dict[str, FailureClassifier] = {
            name: ensure_classifier(candidate) for name, candidate in registered.items()
        }
        for service, overrides in settings.services.items():
            name = overrides.classifier
            if name is not None and name not in self._classifiers:
                raise ConfigurationError(
                    f"service {service!r} uses unknown classifier {name!r}"
                )

    @classmethod
    def from_settings(
        cls,
        settings: FuseSettings,
        *,
        notifiers: Sequence[BreakerNotifier] | None = None,
        classifiers: Mapping[str, object] | None = None,
        logger: StructuredLogger | None = None,
    ) -> CircuitBreakerRegistry:
        """Build a registry backed by Redis at ``settings.redis_url``."""
        return cls(
            settings,
            RedisBreakerStore.from_url(settings.redis_url),
            notifiers=notifiers,
            classifiers=classifiers,
            logger=logger,
        )

    @property
    def prefix(self) -> str:
        """Key namespace of this deployment."""
        return self.settings.cache_prefix

    def services(self) -> list[str]:
        """Return configured service names in configuration order."""
        return list(self.settings.services)

    def is_configured(self, service: str) -> bool:
        """Return whether ``service`` has explicit settings."""
        return service in self.settings.services

    def breaker(self, service: str) -> CircuitBreaker:
        """Build a breaker for ``service`` with its resolved configuration."""
        overrides = self.settings.services.get(service)
        classifier_name = DEFAULT_CLASSIFIER
        if overrides is not None and overrides.classifier is not None:
            classifier_name = overrides.classifier
        return CircuitBreaker(
            service,
            store=self.store,
            config=self.settings.breaker_config(service),
            classifier=self._classifiers[classifier_name],
            threshold_calculator=self._thresholds,
            notifiers=self._notifiers,
            prefix=self.prefix,
            logger=self._logger,
        )

    def _enabled_key(self) -> str:
        return f"{self.prefix}:enabled"

    async def is_enabled(self) -> bool:
        """Return the runtime toggle; a stored override beats static settings."""
        override = await self.store.get(self._enabled_key())
        if override is not None:
            return bool(override)
        return self.settings.enabled

    async def set_enabled(self, enabled: bool | None) -> None:
        """Store a runtime override, or clear it with ``None``."""
        if enabled is None:
            await self.store.forget(self._enabled_key())
        else:
            await self.store.put(self._enabled_key(), enabled)
        log_info(self._logger, "circuit_breaker_toggle", enabled=enabled)
