from __future__ import annotations

from collections.abc import AsyncIterator

import fakeredis
import fakeredis.aioredis
import pytest
import pytest_asyncio

import fuse_core.circuit_breaker.admin as admin_mod
import fuse_core.circuit_breaker.breaker as breaker_mod
import fuse_core.circuit_breaker.metrics as metrics_mod
from fuse_core.circuit_breaker import InMemoryBreakerStore, RedisBreakerStore
from tests.fuse_core.support.runtime_fakes import (
    FakeClock,
    FakeLogger,
    RecordingNotifier,
)


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze breaker, history and admin clocks at a controllable instant."""
    fake = FakeClock()
    monkeypatch.setattr(breaker_mod, "_utcnow", fake.now)
    monkeypatch.setattr(metrics_mod, "_utcnow", fake.now)
    monkeypatch.setattr(admin_mod, "_utcnow", fake.now)
    return fake


@pytest.fixture
def store() -> InMemoryBreakerStore:
    """Provide an empty in-memory store per test."""
    return InMemoryBreakerStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Provide a recording notifier per test."""
    return RecordingNotifier()


@pytest_asyncio.fixture
async def redis_store() -> AsyncIterator[RedisBreakerStore]:
    """Provide a Redis store backed by an isolated fake Redis server."""
    client = fakeredis.aioredis.FakeRedis(
        server=fakeredis.FakeServer(), decode_responses=True
    )
    store = RedisBreakerStore(client)
    yield store
    await store.close()
