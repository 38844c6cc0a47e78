"""
Priority-tiered admission control for outbound calls.

The gate partitions in-flight work into fixed priority classes. Every class
has its own slot count and its own FIFO waiting line; classes never borrow
from each other and there is no ordering across classes. A unit of work
holds its slot until it finishes, successfully or not, and the slot is then
handed straight to the oldest waiter of the same class.

The waiting line of each class is bounded by ``max_queue_depth``. A unit
arriving at a full line is rejected with :class:`GateSaturated`.
"""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Deque, Dict, Mapping, TypeVar

from arbiter.core.errors import GateSaturated
from arbiter.util.logger import get_logger

logger = get_logger("concurrency_gate")

T = TypeVar("T")


class PriorityClass(Enum):
    """Gate classes, highest priority first."""

    USER_REPLY = "user_reply"
    FACT_CHECK = "fact_check"
    BACKGROUND = "background"
    SUMMARIZATION = "summarization"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class ClassLimit:
    concurrency: int
    max_queue_depth: int = 100


@dataclass(frozen=True, slots=True)
class ClassStatus:
    active: int
    waiting: int
    concurrency: int
    max_queue_depth: int


class _GateLane:
    """Slot counter and FIFO waiting line for a single priority class."""

    def __init__(self, priority: PriorityClass, limit: ClassLimit) -> None:
        if limit.concurrency < 1:
            raise ValueError(f"{priority}: concurrency must be >= 1")
        self.priority = priority
        self.concurrency = limit.concurrency
        self.max_queue_depth = limit.max_queue_depth
        self.active = 0
        self.waiters: Deque[asyncio.Future] = deque()

    def _live_waiters(self) -> int:
        return sum(1 for waiter in self.waiters if not waiter.done())

    async def acquire(self) -> None:
        if self.active < self.concurrency and not self._live_waiters():
            self.active += 1
            return

        if self._live_waiters() >= self.max_queue_depth:
            logger.warning("[GATE] %s saturated (%d waiting)", self.priority, self.max_queue_depth)
            raise GateSaturated(self.priority.value, self.max_queue_depth)

        waiter = asyncio.get_running_loop().create_future()
        self.waiters.append(waiter)
        logger.debug("[GATE] %s queued (active=%d, waiting=%d)", self.priority, self.active, len(self.waiters))
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before the cancellation landed.
                self.release()
            else:
                try:
                    self.waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self.waiters:
            waiter = self.waiters.popleft()
            if not waiter.done():
                # Hand the slot over directly; ``active`` is unchanged.
                waiter.set_result(None)
                return
        self.active -= 1


class ConcurrencyGate:
    """Bounds simultaneous in-flight calls per priority class.

    Args:
        limits: Slot count and waiting-line bound for every priority class.
            Classes that are not listed get ``ClassLimit(1)``.
    """

    def __init__(self, limits: Mapping[PriorityClass, ClassLimit] | None = None) -> None:
        limits = dict(limits or {})
        self._lanes: Dict[PriorityClass, _GateLane] = {
            priority: _GateLane(priority, limits.get(priority, ClassLimit(1)))
            for priority in PriorityClass
        }
        logger.info(
            "[GATE] Initialized: %s",
            ", ".join(f"{p}={lane.concurrency}" for p, lane in self._lanes.items()),
        )

    @asynccontextmanager
    async def slot(self, priority: PriorityClass) -> AsyncIterator[None]:
        """Hold one slot of ``priority`` for the duration of the block."""
        lane = self._lanes[priority]
        await lane.acquire()
        try:
            yield
        finally:
            lane.release()

    async def run(self, priority: PriorityClass, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` once a slot of ``priority`` is free."""
        async with self.slot(priority):
            return await operation()

    def status(self) -> Dict[str, ClassStatus]:
        return {
            priority.value: ClassStatus(
                active=lane.active,
                waiting=lane._live_waiters(),
                concurrency=lane.concurrency,
                max_queue_depth=lane.max_queue_depth,
            )
            for priority, lane in self._lanes.items()
        }
