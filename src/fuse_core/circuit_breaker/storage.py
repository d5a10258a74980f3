"""Shared state storage for circuit breakers.

Storage is intentionally decoupled from breaker logic. Every worker process
builds its own breaker objects; they coordinate only through the keys written
here, so any backend must provide:

  - plain ``get``/``put``/``forget`` with optional TTLs,
  - an atomic increment-or-create that (re)applies a TTL,
  - short-lived leases that never block and can be force-released.

Backend errors (for example an unreachable Redis) are never caught here. A
breaker that cannot see its state must fail loudly rather than report the
dependency as healthy.
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import WatchError


def _monotonic() -> float:
    return time.monotonic()


class Lease(ABC):
    """Short-TTL mutual exclusion token obtained from a store."""

    @abstractmethod
    async def try_acquire(self) -> bool:
        """Acquire the lease without waiting; return whether it was obtained."""

    @abstractmethod
    async def release(self) -> bool:
        """Release the lease only if this object currently holds it."""

    @abstractmethod
    async def force_release(self) -> None:
        """Drop the lease regardless of owner. Safe when nobody holds it."""


class AbstractBreakerStore(ABC):
    """Abstract key-value store shared by all breaker instances."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the value for ``key`` or ``None`` when absent or expired."""

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store ``value`` under ``key``, expiring after ``ttl`` seconds if set."""

    @abstractmethod
    async def forget(self, key: str) -> None:
        """Delete ``key`` if present."""

    @abstractmethod
    async def increment(self, key: str, ttl: int) -> int:
        """Atomically increment ``key`` (created at 0) and refresh its TTL."""

    @abstractmethod
    def lock(self, key: str, ttl: int) -> Lease:
        """Return a lease handle for ``key`` with the given TTL."""


class _InMemoryLease(Lease):
    def __init__(self, store: InMemoryBreakerStore, key: str, ttl: int) -> None:
        self._store = store
        self._key = key
        self._ttl = ttl
        self._token = uuid.uuid4().hex

    async def try_acquire(self) -> bool:
        return self._store._acquire_lease(self._key, self._token, self._ttl)

    async def release(self) -> bool:
        return self._store._release_lease(self._key, self._token)

    async def force_release(self) -> None:
        self._store._release_lease(self._key, None)


class InMemoryBreakerStore(AbstractBreakerStore):
    """Process-local store guarded by a single thread lock.

    Suitable for tests and single-process deployments. Expiry is evaluated
    lazily against a monotonic clock.
    """

    def __init__(self) -> None:
        """Initialize empty value and lease tables."""
        self._values: dict[str, tuple[Any, float | None]] = {}
        self._leases: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _expiry(self, ttl: int | None) -> float | None:
        return None if ttl is None else _monotonic() + ttl

    def _live_value(self, key: str) -> Any:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= _monotonic():
            del self._values[key]
            return None
        return value

    async def get(self, key: str) -> Any:
        """Return the live value for ``key``."""
        with self._lock:
            return self._live_value(key)

    async def put(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store a value with an optional TTL."""
        with self._lock:
            self._values[key] = (value, self._expiry(ttl))

    async def forget(self, key: str) -> None:
        """Remove a value if present."""
        with self._lock:
            self._values.pop(key, None)

    async def increment(self, key: str, ttl: int) -> int:
        """Increment a counter under the store lock and refresh its TTL."""
        with self._lock:
            current = self._live_value(key)
            updated = int(current or 0) + 1
            self._values[key] = (updated, self._expiry(ttl))
            return updated

    def lock(self, key: str, ttl: int) -> Lease:
        """Return an in-memory lease handle."""
        return _InMemoryLease(self, key, ttl)

    def _acquire_lease(self, key: str, token: str, ttl: int) -> bool:
        with self._lock:
            now = _monotonic()
            held = self._leases.get(key)
            if held is not None and held[1] > now:
                return False
            self._leases[key] = (token, now + ttl)
            return True

    def _release_lease(self, key: str, token: str | None) -> bool:
        with self._lock:
            held = self._leases.get(key)
            if held is None:
                return False
            if token is not None and held[0] != token:
                return False
            del self._leases[key]
            return True


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class _RedisLease(Lease):
    def __init__(self, client: Redis, key: str, ttl: int) -> None:
        self._client = client
        self._key = key
        self._ttl = ttl
        self._token = uuid.uuid4().hex

    async def try_acquire(self) -> bool:
        acquired = await self._client.set(self._key, self._token, nx=True, ex=self._ttl)
        return bool(acquired)

    async def release(self) -> bool:
        async with self._client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self._key)
                current = _decode(await pipe.get(self._key))
                if current != self._token:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(self._key)
                await pipe.execute()
            except WatchError:
                return False
        return True

    async def force_release(self) -> None:
        await self._client.delete(self._key)


class RedisBreakerStore(AbstractBreakerStore):
    """Redis-backed store for multi-process, multi-host coordination.

    Values are JSON-encoded. Counters are plain Redis integers so ``INCR`` stays
    atomic; they decode as JSON numbers on read.
    """

    def __init__(self, client: Redis) -> None:
        """Wrap an existing ``redis.asyncio`` client.

        Args:
            client: Async Redis client. ``decode_responses`` may be either value.
        """
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisBreakerStore:
        """Build a store with a client created from a Redis URL."""
        client = Redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            health_check_interval=15,
            socket_timeout=3.0,
            socket_connect_timeout=3.0,
        )
        return cls(client)

    async def close(self) -> None:
        """Close the underlying client connection pool."""
        await self._client.aclose()

    async def get(self, key: str) -> Any:
        """Return the decoded value for ``key``."""
        raw = _decode(await self._client.get(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def put(self, key: str, value: Any, ttl: int | None = None) -> None:
        """JSON-encode and store ``value``."""
        await self._client.set(key, json.dumps(value), ex=ttl)

    async def forget(self, key: str) -> None:
        """Delete ``key``."""
        await self._client.delete(key)

    async def increment(self, key: str, ttl: int) -> int:
        """Run ``INCR`` and ``EXPIRE`` in one MULTI/EXEC transaction."""
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl)
            value, _ = await pipe.execute()
        return int(value)

    def lock(self, key: str, ttl: int) -> Lease:
        """Return a ``SET NX EX`` lease handle."""
        return _RedisLease(self._client, key, ttl)
