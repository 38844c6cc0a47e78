"""
Queued detection facade.

``submit`` pre-filters a message, fetches the author's history and queues
both detection tracks; ``wait_for_results`` collects whatever finished in
time. A failed, exhausted or timed-out job reads as "no detection".
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from arbiter.configuration.app_configuration import DetectionSettings
from arbiter.datatypes.detection_datatypes import DetectionOutcome, DetectionResult
from arbiter.datatypes.message_datatypes import MessageRecord
from arbiter.detection.prefilter import should_skip
from arbiter.jobs.job_datatypes import JobHandle, JobType
from arbiter.jobs.job_queue import JobQueueManager
from arbiter.resilience.concurrency_gate import PriorityClass
from arbiter.services.history_service import HistoryService
from arbiter.util.logger import correlated, generate_correlation_id, get_logger

logger = get_logger("detection_service")


@dataclass(slots=True)
class DetectionHandles:
    correlation_id: str
    contradiction: Optional[JobHandle] = None
    misinformation: Optional[JobHandle] = None

    @property
    def empty(self) -> bool:
        return self.contradiction is None and self.misinformation is None


class DetectionService:
    def __init__(
        self,
        jobs: JobQueueManager,
        history: HistoryService,
        settings: Optional[DetectionSettings] = None,
    ) -> None:
        self._jobs = jobs
        self._history = history
        self._settings = settings or DetectionSettings()

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    async def submit(self, record: MessageRecord, correlation_id: Optional[str] = None) -> DetectionHandles:
        """Queue both tracks for ``record``; returns no handles when nothing needs checking."""
        correlation_id = correlation_id or generate_correlation_id()
        log = correlated(logger, correlation_id, "detection")
        handles = DetectionHandles(correlation_id)

        if not self._settings.enabled:
            return handles
        if should_skip(record.content):
            log.debug("[DETECTION] Skipping detection, message filtered out")
            return handles

        try:
            history = await self._history.fetch_user_messages_for_detection(
                record, self._settings.history_window
            )
        except Exception as exc:
            log.error("[DETECTION] History fetch failed: %s", exc)
            history = []

        handles.contradiction = self._jobs.submit(
            JobType.CONTRADICTION,
            {"record": record, "history": history},
            PriorityClass.BACKGROUND,
            correlation_id,
        )
        handles.misinformation = self._jobs.submit(
            JobType.MISINFORMATION, {"record": record}, PriorityClass.FACT_CHECK, correlation_id
        )
        log.debug("[DETECTION] Queued detection jobs")
        return handles

    async def wait_for_results(self, handles: DetectionHandles, timeout: Optional[float] = None) -> DetectionOutcome:
        """Wait for both tracks. Never raises."""
        if timeout is None:
            timeout = self._settings.result_timeout_seconds

        async def resolve(handle: Optional[JobHandle]) -> Optional[DetectionResult]:
            if handle is None:
                return None
            result = await handle.wait(timeout)
            return result if isinstance(result, DetectionResult) else None

        try:
            contradiction, misinformation = await asyncio.gather(
                resolve(handles.contradiction), resolve(handles.misinformation)
            )
        except Exception as exc:
            correlated(logger, handles.correlation_id, "detection").error(
                "[DETECTION] Waiting for results failed: %s", exc
            )
            return DetectionOutcome()
        return DetectionOutcome(contradiction=contradiction, misinformation=misinformation)

    async def detect(self, record: MessageRecord, correlation_id: Optional[str] = None) -> DetectionOutcome:
        """Submit and wait in one call."""
        handles = await self.submit(record, correlation_id)
        if handles.empty:
            return DetectionOutcome()
        return await self.wait_for_results(handles)
