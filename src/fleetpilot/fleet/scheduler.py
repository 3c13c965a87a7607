"""In-process priority rate limiter shared by every API call in the fleet.

Pure asyncio token bucket with a priority queue of waiters, an in-flight
limit and a fleet-wide cooldown applied when the API answers 429.

Priorities:
    CRITICAL (0) — refuel when stranded, emergency actions
    HIGH (1)     — buy/sell at market (revenue-generating)
    NORMAL (2)   — navigate, dock, orbit, extract
    LOW (3)      — status refresh, get_ship, market refresh
    BACKGROUND (4) — fleet sync, waypoint listing
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import IntEnum
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class Priority(IntEnum):
    """Request priority levels (lower = higher priority)."""

    CRITICAL = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3
    BACKGROUND = 4


@dataclass
class _Waiter:
    event: asyncio.Event = field(default_factory=asyncio.Event)
    cancelled: bool = False


class RequestScheduler:
    """Token bucket gate for a single-process fleet.

    Refilled at `rate` tokens/sec up to `burst`. A grant also takes one of
    `max_in_flight` slots, returned by release() once the call completes.
    Waiters are served in priority order, FIFO within a priority.
    """

    def __init__(
        self,
        rate: float = 2.0,
        burst: int = 10,
        *,
        max_in_flight: int = 1,
        cooldown_base: float = 1.0,
        cooldown_max: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        tick: float = 0.05,
    ) -> None:
        if rate <= 0 or burst < 1 or max_in_flight < 1:
            raise ValueError("rate, burst and max_in_flight must be positive")
        self.rate = rate
        self.burst = burst
        self.max_in_flight = max_in_flight
        self.cooldown_base = cooldown_base
        self.cooldown_max = cooldown_max
        self._clock = clock
        self._tick = tick
        self._tokens = float(burst)
        self._last_refill = clock()
        self._in_flight = 0
        self._blocked_until = 0.0
        self._penalty_level = 0
        self._waiters: list[tuple[int, int, _Waiter]] = []
        self._seq = itertools.count()
        self._drain_task: asyncio.Task[None] | None = None
        self.granted = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def waiting(self) -> int:
        return sum(1 for _, _, w in self._waiters if not w.cancelled)

    @property
    def cooling_down(self) -> bool:
        return self._clock() < self._blocked_until

    async def stop(self) -> None:
        """Stop the drain loop (call after all actors have exited)."""
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None

    def try_acquire(self) -> bool:
        """Take a token and an in-flight slot if both are available right now."""
        self._refill()
        if self._clock() < self._blocked_until:
            return False
        if self._in_flight >= self.max_in_flight or self._tokens < 1.0:
            return False
        self._tokens -= 1.0
        self._in_flight += 1
        self.granted += 1
        return True

    async def acquire(self, priority: Priority = Priority.NORMAL) -> None:
        """Wait for a rate limit token at the given priority level."""
        # Fast path: token available and no one waiting
        if not self._waiters and self.try_acquire():
            return

        waiter = _Waiter()
        heapq.heappush(self._waiters, (priority.value, next(self._seq), waiter))
        self._ensure_drain()
        try:
            await waiter.event.wait()
        except asyncio.CancelledError:
            if waiter.event.is_set():
                # Granted between wake-up and cancellation: hand the slot back
                self.release()
            else:
                waiter.cancelled = True
            raise

    def release(self) -> None:
        """Mark one in-flight call as finished and wake the next waiter."""
        if self._in_flight > 0:
            self._in_flight -= 1
        self._grant_waiting()
        if self._waiters:
            self._ensure_drain()

    @asynccontextmanager
    async def slot(self, priority: Priority = Priority.NORMAL) -> AsyncIterator[None]:
        """Hold a token and an in-flight slot for the duration of one call."""
        await self.acquire(priority)
        try:
            yield
        finally:
            self.release()

    def penalize(self, retry_after: float | None = None) -> float:
        """Block every grant after a 429. Returns the cooldown in seconds.

        Without a server hint the cooldown doubles on each consecutive 429,
        capped at cooldown_max.
        """
        self._penalty_level += 1
        if retry_after is not None and retry_after > 0:
            cooldown = float(retry_after)
        else:
            cooldown = min(
                self.cooldown_base * 2 ** (self._penalty_level - 1),
                self.cooldown_max,
            )
        self._blocked_until = max(self._blocked_until, self._clock() + cooldown)
        logger.warning(
            "Rate limited: pausing all requests for %.1fs (level %d)",
            cooldown, self._penalty_level,
        )
        return cooldown

    def record_success(self) -> None:
        """Reset the 429 backoff level after a successful call."""
        self._penalty_level = 0

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
        self._last_refill = now

    def _grant_waiting(self) -> None:
        """Hand out as many grants as tokens and slots allow, best priority first."""
        while self._waiters:
            _, _, waiter = self._waiters[0]
            if waiter.cancelled:
                heapq.heappop(self._waiters)
                continue
            if not self.try_acquire():
                break
            heapq.heappop(self._waiters)
            waiter.event.set()

    def _next_wakeup(self) -> float | None:
        """Seconds until a waiter could be granted, or None when only a slot is missing.

        A missing slot is granted by release(), so there is nothing to poll for.
        """
        now = self._clock()
        if now < self._blocked_until:
            return self._blocked_until - now
        if self._tokens < 1.0:
            return max((1.0 - self._tokens) / self.rate, self._tick)
        return None

    def _ensure_drain(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(
                self._drain_loop(), name="scheduler-drain",
            )

    async def _drain_loop(self) -> None:
        """Background loop: refill tokens and wake the best waiter while any wait."""
        while self._waiters:
            self._grant_waiting()
            if not self._waiters:
                break
            delay = self._next_wakeup()
            if delay is None:
                break
            await asyncio.sleep(delay)
