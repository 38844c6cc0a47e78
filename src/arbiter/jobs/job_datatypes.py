"""Job records and the handles callers wait on."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from arbiter.resilience.concurrency_gate import PriorityClass


class JobType(str, Enum):
    CONTRADICTION = "contradiction"
    MISINFORMATION = "misinformation"
    SUMMARIZATION = "summarization"
    USER_REPLY = "user_reply"


class JobState(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class Job:
    """
    One unit of queued work.

    ``backoff_delays`` records every delay applied before a retry, in order,
    so the retry schedule can be inspected after the fact.
    """

    id: str
    type: JobType
    payload: Dict[str, Any]
    priority: PriorityClass
    max_attempts: int
    correlation_id: Optional[str] = None
    attempts: int = 0
    state: JobState = JobState.QUEUED
    result: Any = None
    error: Optional[str] = None
    backoff_delays: List[float] = field(default_factory=list)
    created_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    @property
    def is_finished(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)


class JobHandle:
    """Awaitable view of a submitted job. Waiting never raises."""

    def __init__(self, job: Job, future: "asyncio.Future[Any]") -> None:
        self.job = job
        self._future = future

    @property
    def id(self) -> str:
        return self.job.id

    @property
    def done(self) -> bool:
        return self._future.done()

    async def wait(self, timeout: Optional[float] = None) -> Any:
        """
        Return the job's result, or ``None`` if it failed for good or did not
        finish within ``timeout`` seconds. The job keeps running on timeout.
        """
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except asyncio.TimeoutError:
            return None
        except asyncio.CancelledError:
            if self._future.cancelled():
                return None
            raise
