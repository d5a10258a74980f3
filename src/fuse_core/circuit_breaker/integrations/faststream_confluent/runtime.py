"""Pause Kafka consumption while a consumer's downstream circuit is open.

A consumer whose dependency is failing should stop pulling messages rather
than redeliver them in a tight loop. The notifier pauses the assigned
partitions when the service's circuit opens, resumes them once the recovery
timeout has passed so a probe message can flow, and resumes immediately when
the circuit closes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from concurrent.futures import Executor
from contextlib import suppress
from functools import partial
from typing import Any, Protocol, runtime_checkable

from fuse_core.circuit_breaker.metrics import BreakerNotifier


class _ConfluentConsumerLike(Protocol):
    """Subset of confluent consumer methods required for pause/resume."""

    def assignment(self) -> Sequence[Any]:
        """Return currently assigned partitions."""

    def pause(self, partitions: Sequence[Any]) -> None:
        """Pause consuming the provided partitions."""

    def resume(self, partitions: Sequence[Any]) -> None:
        """Resume consuming the provided partitions."""


class _AsyncConfluentConsumerLike(Protocol):
    """Subset of FastStream AsyncConfluentConsumer used here."""

    consumer: _ConfluentConsumerLike
    _thread_pool: Executor | None


@runtime_checkable
class _SubscriberLike(Protocol):
    """Minimal subscriber surface needed to access the consumer wrapper."""

    consumer: _AsyncConfluentConsumerLike | None


class _PauserLike(Protocol):
    """Pause/resume adapter interface used by the notifier."""

    async def pause_assigned(self) -> None:
        """Pause assigned partitions."""

    async def resume_assigned(self) -> None:
        """Resume assigned partitions."""


class ConfluentAssignmentPauser:
    """Pause and resume assigned partitions for one FastStream subscriber."""

    def __init__(self, *, subscriber: object) -> None:
        """Create a pauser bound to one subscriber instance.

        Args:
            subscriber: FastStream subscriber wrapper holding the Kafka consumer.
        """
        self._subscriber = subscriber
        self._lock = asyncio.Lock()
        self._paused = False

    @property
    def paused(self) -> bool:
        """Whether this pauser currently holds the partitions paused."""
        return self._paused

    async def pause_assigned(self) -> None:
        """Pause current partition assignments when consumer is available."""
        async with self._lock:
            consumer = self._resolve_consumer()
            if consumer is None or self._paused:
                return

            loop = asyncio.get_running_loop()
            assignments = await loop.run_in_executor(
                consumer._thread_pool,
                consumer.consumer.assignment,
            )
            if not assignments:
                return

            await loop.run_in_executor(
                consumer._thread_pool,
                partial(consumer.consumer.pause, assignments),
            )
            self._paused = True

    async def resume_assigned(self) -> None:
        """Resume current partition assignments when paused."""
        async with self._lock:
            if not self._paused:
                return

            consumer = self._resolve_consumer()
            if consumer is None:
                self._paused = False
                return

            loop = asyncio.get_running_loop()
            assignments = await loop.run_in_executor(
                consumer._thread_pool,
                consumer.consumer.assignment,
            )
            if assignments:
                await loop.run_in_executor(
                    consumer._thread_pool,
                    partial(consumer.consumer.resume, assignments),
                )
            self._paused = False

    def _resolve_consumer(self) -> _AsyncConfluentConsumerLike | None:
        subscriber = self._subscriber
        if not isinstance(subscriber, _SubscriberLike):
            return None
        return subscriber.consumer


class CircuitPauseResumeNotifier(BreakerNotifier):
    """Pause on OPEN for one service and schedule resume for its probe window."""

    def __init__(
        self,
        *,
        service: str,
        pauser: _PauserLike,
        recovery_timeout_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Create pause/resume orchestration for circuit transitions.

        Args:
            service: Only transitions of this service are acted on.
            pauser: Adapter that pauses or resumes assigned partitions.
            recovery_timeout_seconds: Delay before automatic resume, normally
                the breaker's ``timeout``.
            sleep: Awaitable sleep function used for delayed resume scheduling.
        """
        self._service = service
        self._pauser = pauser
        self._recovery_timeout_seconds = recovery_timeout_seconds
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._resume_task: asyncio.Task[None] | None = None

    async def on_opened(
        self, service: str, failure_rate: float, attempts: int, failures: int
    ) -> None:
        """Pause consumption and schedule the probe-window resume."""
        _ = (failure_rate, attempts, failures)
        if service != self._service:
            return
        await self._pause_and_schedule_resume()

    async def on_half_open(self, service: str) -> None:
        """No-op; the scheduled resume already lets a probe through."""
        _ = service

    async def on_closed(self, service: str) -> None:
        """Resume consumption right away."""
        if service != self._service:
            return
        await self._cancel_resume_and_resume_now()

    async def close(self) -> None:
        """Cancel any scheduled resume task."""
        task: asyncio.Task[None] | None
        async with self._lock:
            task = self._resume_task
            self._resume_task = None
            if task is not None:
                task.cancel()
        if task is None:
            return
        with suppress(asyncio.CancelledError):
            await task

    async def _pause_and_schedule_resume(self) -> None:
        async with self._lock:
            await self._pauser.pause_assigned()
            if self._resume_task is not None:
                self._resume_task.cancel()
            self._resume_task = asyncio.create_task(
                self._resume_after_timeout(),
                name=f"circuit_breaker_resume:{self._service}",
            )

    async def _cancel_resume_and_resume_now(self) -> None:
        async with self._lock:
            if self._resume_task is not None:
                self._resume_task.cancel()
                self._resume_task = None
            await self._pauser.resume_assigned()

    async def _resume_after_timeout(self) -> None:
        try:
            await self._sleep(self._recovery_timeout_seconds)
        except asyncio.CancelledError:
            return

        async with self._lock:
            await self._pauser.resume_assigned()
            self._resume_task = None
