"""
Named job queues with retries.

Each queue owns an asyncio.Queue and a pool of worker tasks started lazily
on the first submission, up to the configured concurrency. A failed job is
retried after ``backoff * 2 ** (attempt - 1)`` seconds until ``max_attempts``
is reached; after that it is marked failed and its handle resolves to
``None``. Only the most recent completed and failed jobs are retained.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional

from arbiter.configuration.app_configuration import QueueSettings
from arbiter.core.errors import JobExhausted
from arbiter.jobs.job_datatypes import Job, JobHandle, JobState, JobType
from arbiter.resilience.concurrency_gate import PriorityClass
from arbiter.util.logger import correlated, get_logger

logger = get_logger("job_queue")

JobHandler = Callable[[Job], Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[Any]]


def backoff_delay(backoff_seconds: float, attempt: int) -> float:
    """Delay before retrying after the ``attempt``-th failure (1-based)."""
    return backoff_seconds * (2 ** (attempt - 1))


class JobQueue:
    """
    One named queue of jobs handled by ``handler``.

    Args:
        name: Queue name, used in logs and task names.
        handler: Coroutine run for each attempt; its return value is the job result.
        settings: Concurrency, retry and retention settings.
        sleep: Awaitable used for retry delays (injectable for tests).
    """

    def __init__(
        self,
        name: str,
        handler: JobHandler,
        settings: Optional[QueueSettings] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.name = name
        self._handler = handler
        self._settings = settings or QueueSettings()
        self._sleep = sleep

        self._queue: "asyncio.Queue[Job]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._retry_tasks: set[asyncio.Task] = set()
        self._futures: Dict[str, "asyncio.Future[Any]"] = {}
        self._active: Dict[str, Job] = {}
        self._delayed: Dict[str, Job] = {}
        self._completed: Deque[Job] = deque(maxlen=max(1, self._settings.keep_completed))
        self._failed: Deque[Job] = deque(maxlen=max(1, self._settings.keep_failed))
        self._closed = False

    # ------------------------------------------------------
    # Public API
    # ------------------------------------------------------

    def submit(
        self,
        job_type: JobType,
        payload: Mapping[str, Any],
        priority: PriorityClass = PriorityClass.BACKGROUND,
        correlation_id: Optional[str] = None,
    ) -> JobHandle:
        """Enqueue a job and return a handle to wait on."""
        if self._closed:
            raise RuntimeError(f"Job queue '{self.name}' is shut down")

        job = Job(
            id=uuid.uuid4().hex[:12],
            type=job_type,
            payload=dict(payload),
            priority=priority,
            max_attempts=max(1, self._settings.max_attempts),
            correlation_id=correlation_id,
        )
        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._futures[job.id] = future
        self._queue.put_nowait(job)
        self._ensure_workers()

        correlated(logger, correlation_id, self.name).debug("[QUEUE] Submitted job %s", job.id)
        return JobHandle(job, future)

    def status(self) -> Dict[str, int]:
        return {
            "waiting": self._queue.qsize(),
            "active": len(self._active),
            "delayed": len(self._delayed),
            "completed": len(self._completed),
            "failed": len(self._failed),
        }

    @property
    def completed_jobs(self) -> List[Job]:
        return list(self._completed)

    @property
    def failed_jobs(self) -> List[Job]:
        return list(self._failed)

    async def shutdown(self) -> None:
        """Cancel workers and pending retries; unresolved handles resolve to ``None``."""
        self._closed = True
        tasks = [*self._workers, *self._retry_tasks]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._retry_tasks.clear()

        for future in self._futures.values():
            if not future.done():
                future.set_result(None)
        self._futures.clear()
        logger.info("[QUEUE] Queue '%s' shut down", self.name)

    # ------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------

    def _ensure_workers(self) -> None:
        self._workers = [task for task in self._workers if not task.done()]
        wanted = max(1, self._settings.concurrency)
        while len(self._workers) < wanted:
            index = len(self._workers)
            self._workers.append(
                asyncio.create_task(self._worker(), name=f"jobq-{self.name}-{index}")
            )

    async def _worker(self) -> None:
        while True:
            try:
                job = await self._queue.get()
            except asyncio.CancelledError:
                return

            try:
                await self._run_attempt(job)
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("[QUEUE] Unexpected error running job %s on '%s'", job.id, self.name)
            finally:
                self._queue.task_done()

    async def _run_attempt(self, job: Job) -> None:
        log = correlated(logger, job.correlation_id, self.name)
        job.state = JobState.ACTIVE
        job.attempts += 1
        self._active[job.id] = job

        try:
            result = await self._handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            job.error = f"{type(exc).__name__}: {exc}"
            self._active.pop(job.id, None)
            if job.attempts < job.max_attempts:
                delay = backoff_delay(self._settings.backoff_seconds, job.attempts)
                job.backoff_delays.append(delay)
                job.state = JobState.DELAYED
                self._delayed[job.id] = job
                log.warning(
                    "[QUEUE] Job %s attempt %d/%d failed (%s), retrying in %.1fs",
                    job.id, job.attempts, job.max_attempts, job.error, delay,
                )
                task = asyncio.create_task(self._retry_later(job, delay), name=f"jobq-{self.name}-retry-{job.id}")
                self._retry_tasks.add(task)
                task.add_done_callback(self._retry_tasks.discard)
                return

            failure = JobExhausted(job.id, job.attempts, job.error)
            log.error("[QUEUE] %s", failure)
            self._finish(job, JobState.FAILED, None)
            return

        self._active.pop(job.id, None)
        job.result = result
        log.debug("[QUEUE] Job %s completed after %d attempt(s)", job.id, job.attempts)
        self._finish(job, JobState.COMPLETED, result)

    async def _retry_later(self, job: Job, delay: float) -> None:
        await self._sleep(delay)
        self._delayed.pop(job.id, None)
        if self._closed:
            return
        job.state = JobState.QUEUED
        self._queue.put_nowait(job)
        self._ensure_workers()

    def _finish(self, job: Job, state: JobState, result: Any) -> None:
        loop = asyncio.get_running_loop()
        job.state = state
        job.finished_at = loop.time()
        (self._completed if state is JobState.COMPLETED else self._failed).append(job)

        future = self._futures.pop(job.id, None)
        if future is not None and not future.done():
            future.set_result(result)


class JobQueueManager:
    """The set of named queues, one per job type."""

    def __init__(self, queues: Mapping[JobType, JobQueue]) -> None:
        self._queues: Dict[JobType, JobQueue] = dict(queues)

    @classmethod
    def build(
        cls,
        handlers: Mapping[JobType, JobHandler],
        settings_for: Callable[[str], QueueSettings],
        sleep: Sleeper = asyncio.sleep,
    ) -> "JobQueueManager":
        return cls({
            job_type: JobQueue(job_type.value, handler, settings_for(job_type.value), sleep)
            for job_type, handler in handlers.items()
        })

    def queue(self, job_type: JobType) -> JobQueue:
        return self._queues[job_type]

    def submit(
        self,
        job_type: JobType,
        payload: Mapping[str, Any],
        priority: PriorityClass = PriorityClass.BACKGROUND,
        correlation_id: Optional[str] = None,
    ) -> JobHandle:
        return self._queues[job_type].submit(job_type, payload, priority, correlation_id)

    def status(self) -> Dict[str, Dict[str, int]]:
        return {job_type.value: queue.status() for job_type, queue in self._queues.items()}

    async def shutdown(self) -> None:
        await asyncio.gather(*(queue.shutdown() for queue in self._queues.values()), return_exceptions=True)
