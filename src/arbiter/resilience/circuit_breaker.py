"""
Per-dependency circuit breaker.

Each upstream (generation service, web-answer/search service, message store)
gets its own :class:`CircuitBreaker`; a failing dependency never opens the
breaker of another.

States:
    - CLOSED: normal operation, calls pass through.
    - OPEN: calls fail fast with :class:`BreakerOpen` until ``open_timeout``
      has elapsed since the last failure.
    - HALF_OPEN: one probe at a time is let through; ``half_open_successes``
      consecutive successes close the breaker, any failure reopens it.

Usage:
    >>> breaker = CircuitBreaker("generation", failure_threshold=3, open_timeout=120)
    >>> result = await breaker.execute(lambda: client.generate(request))
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from arbiter.core.errors import BreakerOpen
from arbiter.util.logger import get_logger

logger = get_logger("circuit_breaker")

T = TypeVar("T")


class BreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class BreakerStatus:
    """Point-in-time snapshot of a breaker, used for status reporting."""

    name: str
    state: BreakerState
    failure_count: int
    last_failure_at: Optional[float]
    half_open_success_count: int


class CircuitBreaker:
    """Fail-fast guard around one unreliable async dependency.

    Args:
        name: Dependency name used in logs and errors.
        failure_threshold: Consecutive failures in CLOSED that open the breaker.
        open_timeout: Seconds to stay OPEN after the most recent failure.
        half_open_successes: Consecutive probe successes needed to close again.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        open_timeout: float = 60.0,
        half_open_successes: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1 or half_open_successes < 1:
            raise ValueError("failure_threshold and half_open_successes must be >= 1")

        self.name = name
        self.failure_threshold = failure_threshold
        self.open_timeout = open_timeout
        self.half_open_successes = half_open_successes
        self._clock = clock

        self._state = BreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_at: Optional[float] = None
        self._success_count = 0
        self._probe_in_flight = False

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def status(self) -> BreakerStatus:
        return BreakerStatus(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_at=self._last_failure_at,
            half_open_success_count=self._success_count,
        )

    def _remaining_open_time(self) -> float:
        if self._last_failure_at is None:
            return 0.0
        return max(0.0, self.open_timeout - (self._clock() - self._last_failure_at))

    def _admit(self) -> None:
        """Decide whether a call may proceed, transitioning OPEN -> HALF_OPEN when due."""
        if self._state is BreakerState.OPEN:
            remaining = self._remaining_open_time()
            if remaining > 0:
                logger.debug("[BREAKER] %s OPEN - failing fast (%.1fs left)", self.name, remaining)
                raise BreakerOpen(self.name, remaining)
            self._state = BreakerState.HALF_OPEN
            self._success_count = 0
            logger.info("[BREAKER] %s transitioning to HALF_OPEN", self.name)

        if self._state is BreakerState.HALF_OPEN:
            if self._probe_in_flight:
                raise BreakerOpen(self.name, 0.0)
            self._probe_in_flight = True

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker.

        Raises:
            BreakerOpen: Without invoking ``operation`` while the breaker is
                open, or while a half-open probe is already in flight.
            Exception: Whatever ``operation`` raised, after recording the failure.
        """
        self._admit()
        probing = self._state is BreakerState.HALF_OPEN
        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise
        finally:
            if probing:
                self._probe_in_flight = False
        self._on_success()
        return result

    def _on_success(self) -> None:
        self._failure_count = 0
        if self._state is BreakerState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.half_open_successes:
                self._state = BreakerState.CLOSED
                self._success_count = 0
                logger.info("[BREAKER] %s recovered, state CLOSED", self.name)

    def _on_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_at = self._clock()

        if self._state is BreakerState.HALF_OPEN:
            self._state = BreakerState.OPEN
            self._success_count = 0
            logger.warning("[BREAKER] %s failed during probe, state OPEN", self.name)
        elif self._failure_count >= self.failure_threshold and self._state is BreakerState.CLOSED:
            self._state = BreakerState.OPEN
            logger.error(
                "[BREAKER] %s threshold exceeded (%d/%d), state OPEN",
                self.name,
                self._failure_count,
                self.failure_threshold,
            )

    def reset(self) -> None:
        """Force the breaker back to CLOSED (admin use)."""
        self._state = BreakerState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_at = None
        self._probe_in_flight = False
