from __future__ import annotations

import pytest

from fuse_core.circuit_breaker import (
    CircuitBreakerRegistry,
    CircuitState,
    InMemoryBreakerStore,
    StateHistoryNotifier,
)
from fuse_core.circuit_breaker.admin import (
    circuit_status,
    force_close_circuit,
    force_open_circuit,
    list_services,
    reset_circuits,
    status_report,
)
from fuse_core.settings import FuseSettings, ServiceSettings
from tests.fuse_core.support.runtime_fakes import (
    FakeClock,
    FakeLogger,
    RecordingNotifier,
)

pytestmark = pytest.mark.asyncio


@pytest.fixture
def history(store: InMemoryBreakerStore) -> StateHistoryNotifier:
    return StateHistoryNotifier(store)


@pytest.fixture
def registry(
    store: InMemoryBreakerStore,
    notifier: RecordingNotifier,
    history: StateHistoryNotifier,
) -> CircuitBreakerRegistry:
    settings = FuseSettings(
        services={
            "stripe": ServiceSettings(min_requests=2, timeout=30),
            "mailgun": ServiceSettings(threshold=80),
        }
    )
    return CircuitBreakerRegistry(
        settings, store, notifiers=[notifier, history], logger=FakeLogger()
    )


async def test_list_services_returns_configured_names(
    registry: CircuitBreakerRegistry,
) -> None:
    assert list_services(registry) == ["stripe", "mailgun"]


async def test_status_covers_all_services_and_promotes_elapsed_open(
    registry: CircuitBreakerRegistry, clock: FakeClock
) -> None:
    await registry.breaker("stripe").force_open()
    clock.advance(31)

    stats = await circuit_status(registry)

    assert list(stats) == ["stripe", "mailgun"]
    assert stats["stripe"].state == CircuitState.HALF_OPEN
    assert stats["mailgun"].state == CircuitState.CLOSED
    assert stats["mailgun"].threshold == 80


async def test_unknown_service_warns_and_does_nothing(
    registry: CircuitBreakerRegistry, notifier: RecordingNotifier, clock: FakeClock
) -> None:
    logger = FakeLogger()

    assert await circuit_status(registry, "twilio", logger=logger) == {}
    assert await reset_circuits(registry, "twilio", logger=logger) == []
    assert await force_open_circuit(registry, "twilio", logger=logger) is False
    assert await force_close_circuit(registry, "twilio", logger=logger) is False

    assert logger.events("warning") == ["circuit_service_not_configured"] * 4
    assert notifier.events == []


async def test_no_configured_services_warns(
    store: InMemoryBreakerStore, clock: FakeClock
) -> None:
    logger = FakeLogger()
    registry = CircuitBreakerRegistry(FuseSettings(), store, logger=FakeLogger())

    assert await circuit_status(registry, logger=logger) == {}
    assert await reset_circuits(registry, logger=logger) == []
    assert logger.events("warning") == ["circuit_no_services_configured"] * 2


async def test_force_open_then_reset_all(
    registry: CircuitBreakerRegistry, notifier: RecordingNotifier, clock: FakeClock
) -> None:
    logger = FakeLogger()

    assert await force_open_circuit(registry, "stripe", logger=logger) is True
    assert await force_open_circuit(registry, "mailgun", logger=logger) is True
    assert await reset_circuits(registry, logger=logger) == ["stripe", "mailgun"]

    for service in ("stripe", "mailgun"):
        assert await registry.breaker(service).is_closed() is True
    assert notifier.kinds() == ["opened", "opened"]
    assert logger.events("info") == [
        "circuit_opened_by_operator",
        "circuit_opened_by_operator",
        "circuit_reset_by_operator",
        "circuit_reset_by_operator",
    ]


async def test_force_close_reports_closed(
    registry: CircuitBreakerRegistry, notifier: RecordingNotifier, clock: FakeClock
) -> None:
    await registry.breaker("stripe").force_open()

    assert await force_close_circuit(registry, "stripe") is True

    assert await registry.breaker("stripe").is_closed() is True
    assert notifier.kinds() == ["opened", "closed"]


async def test_status_report_includes_history_and_toggle(
    registry: CircuitBreakerRegistry,
    history: StateHistoryNotifier,
    clock: FakeClock,
) -> None:
    await registry.breaker("stripe").record_failure()
    await registry.breaker("stripe").record_failure()
    await registry.set_enabled(False)

    report = await status_report(registry, history)

    assert report["circuit_breaker_enabled"] is False
    assert report["timestamp"] == "12:00:05"
    services = report["services"]
    assert isinstance(services, dict)
    assert services["stripe"]["state"] == "open"
    assert services["stripe"]["recovery_at"] == clock.timestamp + 30
    assert services["stripe"]["state_history"] == [
        {"from": "closed", "to": "open", "time": "12:00:05"}
    ]
    assert services["mailgun"]["state"] == "closed"
    assert services["mailgun"]["state_history"] == []


async def test_status_report_without_history(
    registry: CircuitBreakerRegistry, clock: FakeClock
) -> None:
    report = await status_report(registry)

    services = report["services"]
    assert isinstance(services, dict)
    assert "state_history" not in services["stripe"]
    assert report["circuit_breaker_enabled"] is True
