from __future__ import annotations

import httpx
import pytest
from pytest_httpx import HTTPXMock

from fuse_core.circuit_breaker import (
    CircuitBreakerRegistry,
    CircuitGuard,
    CircuitOpenError,
    CircuitState,
    InMemoryBreakerStore,
)
from fuse_core.settings import FuseSettings, ServiceSettings
from tests.fuse_core.support.runtime_fakes import (
    FakeClock,
    FakeLogger,
    RecordingNotifier,
)

pytestmark = pytest.mark.asyncio

CHARGES_URL = "https://api.stripe.test/v1/charges"


async def _charge(client: httpx.AsyncClient, amount: int) -> dict[str, object]:
    response = await client.post(CHARGES_URL, json={"amount": amount})
    response.raise_for_status()
    return response.json()


@pytest.fixture
def registry(
    store: InMemoryBreakerStore, notifier: RecordingNotifier
) -> CircuitBreakerRegistry:
    settings = FuseSettings(
        retry_after_seconds=15.0,
        services={"stripe": ServiceSettings(min_requests=3, timeout=30)},
    )
    return CircuitBreakerRegistry(
        settings, store, notifiers=[notifier], logger=FakeLogger()
    )


async def test_successful_call_returns_result_and_counts_attempt(
    registry: CircuitBreakerRegistry, clock: FakeClock, httpx_mock: HTTPXMock
) -> None:
    httpx_mock.add_response(url=CHARGES_URL, method="POST", json={"id": "ch_1"})
    guard = CircuitGuard(registry, "stripe")

    async with httpx.AsyncClient() as client:
        result = await guard.call(_charge, client, 500)

    stats = await registry.breaker("stripe").get_stats()
    assert result == {"id": "ch_1"}
    assert (stats.attempts, stats.failures) == (1, 0)


async def test_server_errors_trip_and_reject_without_calling(
    registry: CircuitBreakerRegistry,
    clock: FakeClock,
    notifier: RecordingNotifier,
    httpx_mock: HTTPXMock,
) -> None:
    for _ in range(3):
        httpx_mock.add_response(url=CHARGES_URL, method="POST", status_code=503)
    guard = CircuitGuard(registry, "stripe")

    async with httpx.AsyncClient() as client:
        for _ in range(3):
            with pytest.raises(httpx.HTTPStatusError):
                await guard.call(_charge, client, 500)

        with pytest.raises(CircuitOpenError) as excinfo:
            await guard.call(_charge, client, 500)

    assert excinfo.value.service == "stripe"
    assert excinfo.value.retry_after == 15.0
    assert len(httpx_mock.get_requests()) == 3
    assert notifier.events == [("opened", "stripe", 100.0, 3, 3)]


async def test_rate_limited_responses_never_trip(
    registry: CircuitBreakerRegistry, clock: FakeClock, httpx_mock: HTTPXMock
) -> None:
    for _ in range(5):
        httpx_mock.add_response(url=CHARGES_URL, method="POST", status_code=429)
    guard = CircuitGuard(registry, "stripe")

    async with httpx.AsyncClient() as client:
        for _ in range(5):
            with pytest.raises(httpx.HTTPStatusError):
                await guard.call(_charge, client, 500)

    stats = await registry.breaker("stripe").get_stats()
    assert stats.state == CircuitState.CLOSED
    assert (stats.attempts, stats.failures) == (5, 0)


async def test_probe_after_timeout_closes_on_success(
    registry: CircuitBreakerRegistry,
    clock: FakeClock,
    notifier: RecordingNotifier,
    httpx_mock: HTTPXMock,
) -> None:
    httpx_mock.add_response(url=CHARGES_URL, method="POST", json={"id": "ch_2"})
    await registry.breaker("stripe").force_open()
    guard = CircuitGuard(registry, "stripe")
    clock.advance(30)

    async with httpx.AsyncClient() as client:
        result = await guard.call(_charge, client, 700)

    assert result == {"id": "ch_2"}
    assert await registry.breaker("stripe").is_closed() is True
    assert notifier.kinds() == ["opened", "half_open", "closed"]


async def test_non_http_errors_are_recorded_and_reraised(
    registry: CircuitBreakerRegistry, clock: FakeClock
) -> None:
    async def _explode() -> None:
        raise ValueError("malformed payload")

    guard = CircuitGuard(registry, "stripe")

    with pytest.raises(ValueError, match="malformed payload"):
        await guard.call(_explode)

    assert (await registry.breaker("stripe").get_stats()).failures == 1


async def test_disabled_runtime_toggle_bypasses_open_circuit(
    registry: CircuitBreakerRegistry, clock: FakeClock
) -> None:
    calls: list[int] = []

    async def _work(value: int) -> int:
        calls.append(value)
        return value * 2

    await registry.breaker("stripe").force_open()
    await registry.set_enabled(False)

    assert await CircuitGuard(registry, "stripe").call(_work, 21) == 42
    assert await CircuitGuard(registry, "stripe", enabled=False).call(_work, 1) == 2
    with pytest.raises(CircuitOpenError):
        await CircuitGuard(registry, "stripe", enabled=True).call(_work, 3)

    assert calls == [21, 1]
    stats = await registry.breaker("stripe").get_stats()
    assert stats.attempts == 0
