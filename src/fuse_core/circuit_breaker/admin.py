"""Operator actions over configured breakers.

These back command-line tooling and status pages. None of them raise for an
unknown service: they log a warning and do nothing.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fuse_core.circuit_breaker.metrics import StateHistoryNotifier
from fuse_core.circuit_breaker.registry import CircuitBreakerRegistry
from fuse_core.circuit_breaker.state import BreakerStats
from fuse_core.logging import StructuredLogger, get_logger, log_info, log_warning

_logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _select_services(
    registry: CircuitBreakerRegistry,
    service: str | None,
    logger: StructuredLogger,
) -> list[str]:
    if service is not None:
        if not registry.is_configured(service):
            log_warning(logger, "circuit_service_not_configured", service=service)
            return []
        return [service]

    services = registry.services()
    if not services:
        log_warning(logger, "circuit_no_services_configured")
    return services


def list_services(registry: CircuitBreakerRegistry) -> list[str]:
    """Return configured service names."""
    return registry.services()


async def circuit_status(
    registry: CircuitBreakerRegistry,
    service: str | None = None,
    *,
    logger: StructuredLogger | None = None,
) -> dict[str, BreakerStats]:
    """Return stats for one service or all configured services.

    ``is_open`` is evaluated first so circuits whose timeout has elapsed are
    reported as half-open rather than open.
    """
    logger = _logger if logger is None else logger
    stats: dict[str, BreakerStats] = {}
    for name in _select_services(registry, service, logger):
        breaker = registry.breaker(name)
        await breaker.is_open()
        stats[name] = await breaker.get_stats()
    return stats


async def reset_circuits(
    registry: CircuitBreakerRegistry,
    service: str | None = None,
    *,
    logger: StructuredLogger | None = None,
) -> list[str]:
    """Reset one or all configured services to ``CLOSED``; return those reset."""
    logger = _logger if logger is None else logger
    reset: list[str] = []
    for name in _select_services(registry, service, logger):
        await registry.breaker(name).reset()
        log_info(logger, "circuit_reset_by_operator", service=name)
        reset.append(name)
    return reset


async def force_open_circuit(
    registry: CircuitBreakerRegistry,
    service: str,
    *,
    logger: StructuredLogger | None = None,
) -> bool:
    """Manually open ``service``; return ``False`` when it is not configured."""
    logger = _logger if logger is None else logger
    if not _select_services(registry, service, logger):
        return False
    await registry.breaker(service).force_open()
    log_info(logger, "circuit_opened_by_operator", service=service)
    return True


async def force_close_circuit(
    registry: CircuitBreakerRegistry,
    service: str,
    *,
    logger: StructuredLogger | None = None,
) -> bool:
    """Manually close ``service``; return ``False`` when it is not configured."""
    logger = _logger if logger is None else logger
    if not _select_services(registry, service, logger):
        return False
    await registry.breaker(service).force_close()
    log_info(logger, "circuit_closed_by_operator", service=service)
    return True


async def status_report(
    registry: CircuitBreakerRegistry,
    history: StateHistoryNotifier | None = None,
) -> dict[str, object]:
    """Build the status-page payload for every configured service."""
    services: dict[str, dict[str, object]] = {}
    for name in registry.services():
        breaker = registry.breaker(name)
        await breaker.is_open()
        stats = await breaker.get_stats()
        entry = stats.as_dict()
        if history is not None:
            await history.track(name, stats.state)
            entry["state_history"] = await history.history(name)
        services[name] = entry

    return {
        "services": services,
        "circuit_breaker_enabled": await registry.is_enabled(),
        "timestamp": _utcnow().strftime("%H:%M:%S"),
    }
