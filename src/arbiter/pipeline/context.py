"""
Process-wide wiring of the detection pipeline.

:class:`PipelineContext` builds every component from an :class:`AppConfig`:
one breaker per upstream, the shared concurrency gate, the caches, the
message store, the upstream clients, the detectors, the job queues and the
cache maintenance task. Nothing here is a module-level singleton; the
entrypoint owns one context and hands it to the bot.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from arbiter.cache.cache_maintenance import CacheMaintenance
from arbiter.cache.history_cache import MessageHistoryCache
from arbiter.cache.lru_cache import TTLCache
from arbiter.configuration.app_configuration import DEPENDENCIES, PRIORITY_CLASSES, AppConfig
from arbiter.database.message_store import MessageStore
from arbiter.detection.content_analyzer import ContentAnalyzer
from arbiter.detection.contradiction_validator import ContradictionValidator
from arbiter.detection.orchestrator import DetectionOrchestrator
from arbiter.jobs.job_datatypes import JobType
from arbiter.jobs.job_queue import JobQueueManager
from arbiter.jobs.workers import JobWorkers
from arbiter.resilience.circuit_breaker import CircuitBreaker
from arbiter.resilience.concurrency_gate import ClassLimit, ConcurrencyGate, PriorityClass
from arbiter.services.detection_service import DetectionService
from arbiter.services.generation_service import GenerationService
from arbiter.services.history_service import HistoryService
from arbiter.services.web_search_client import WebSearchClient
from arbiter.util.logger import get_logger

logger = get_logger("pipeline_context")

SUMMARY_TIMEOUT_SECONDS = 120.0


class PipelineContext:
    """Owner of every long-lived pipeline component."""

    def __init__(
        self,
        config: AppConfig,
        *,
        generation: Optional[GenerationService] = None,
        web: Optional[WebSearchClient] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        detection = config.detection
        cache = config.cache
        storage = config.storage

        self.breakers: Dict[str, CircuitBreaker] = {}
        for dependency in DEPENDENCIES:
            settings = config.breaker(dependency)
            self.breakers[dependency] = CircuitBreaker(
                dependency,
                failure_threshold=settings.failure_threshold,
                open_timeout=settings.open_timeout_seconds,
                half_open_successes=settings.half_open_successes,
                clock=clock,
            )

        limits = {}
        for name in PRIORITY_CLASSES:
            limit = config.gate_limit(name)
            limits[PriorityClass(name)] = ClassLimit(limit.concurrency, limit.max_queue_depth)
        self.gate = ConcurrencyGate(limits)

        self.analysis_cache: TTLCache = TTLCache(
            cache.analysis_max_entries, cache.analysis_ttl_seconds, cache.eviction_fraction, name="analysis", clock=clock
        )
        self.validation_cache: TTLCache = TTLCache(
            cache.validation_max_entries, None, cache.eviction_fraction, name="validation", clock=clock
        )
        self.history_cache = MessageHistoryCache(
            cache.history_max_entries, cache.user_history_length, cache.channel_history_length
        )

        self.store = MessageStore(breaker=self.breakers["store"])
        self.generation = generation or GenerationService.from_settings(
            config.ai_settings, self.breakers["generation"], self.gate
        )
        self.web = web or WebSearchClient(config.web, self.breakers["web"], self.gate)

        self.analyzer = ContentAnalyzer(self.analysis_cache, detection.substantiveness_threshold)
        self.validator = ContradictionValidator(self.validation_cache)
        self.history = HistoryService(self.store, self.history_cache, storage)
        self.orchestrator = DetectionOrchestrator(
            self.generation, self.web, self.analyzer, self.validator, detection, self.history
        )

        self.workers = JobWorkers(self.orchestrator, self.generation, self.web, self.history, detection)
        self.jobs = JobQueueManager.build(self.workers.handlers(), config.queue, sleep)
        self.history.set_summarizer(self.summarize)
        self.detection = DetectionService(self.jobs, self.history, detection)

        self.maintenance = CacheMaintenance(
            {"analysis": self.analysis_cache, "validation": self.validation_cache},
            get_interval=lambda: self.config.cache.cleanup_interval_seconds,
            size_reporter=lambda: {"history": len(self.history_cache)},
            retention=lambda: self.store.purge_older_than(self.config.storage.retention_days),
        )
        self._started = False

    @classmethod
    def from_config(cls, config: AppConfig, **overrides: Any) -> "PipelineContext":
        return cls(config, **overrides)

    async def summarize(self, prompt: str) -> Optional[str]:
        """Run a summarization job and wait for it; ``None`` if it failed or timed out."""
        handle = self.jobs.submit(JobType.SUMMARIZATION, {"prompt": prompt}, PriorityClass.SUMMARIZATION)
        result = await handle.wait(SUMMARY_TIMEOUT_SECONDS)
        return result if isinstance(result, str) else None

    async def start(self) -> None:
        """Open the store and start background maintenance."""
        if self._started:
            return
        await self.store.initialize(Path(self.config.storage.db_path))
        self.maintenance.start()
        self._started = True
        logger.info("[PIPELINE] Detection pipeline started")

    async def shutdown(self) -> None:
        """Stop background work and close every upstream client, in dependency order."""
        steps = [
            ("cache maintenance", self.maintenance.shutdown),
            ("history pruning", self.history.shutdown),
            ("job queues", self.jobs.shutdown),
            ("message store", self.store.shutdown),
            ("generation client", self.generation.close),
            ("web client", self.web.close),
        ]
        for name, step in steps:
            try:
                await step()
            except Exception as exc:
                logger.exception("[PIPELINE] Error shutting down %s: %s", name, exc)
        self._started = False
        logger.info("[PIPELINE] Detection pipeline shut down")

    def status(self) -> Dict[str, Any]:
        """Breaker states, gate occupancy, cache sizes and queue counts."""
        return {
            "breakers": {
                name: {
                    "state": str(breaker.state),
                    "failures": breaker.failure_count,
                }
                for name, breaker in self.breakers.items()
            },
            "gate": {name: asdict(status) for name, status in self.gate.status().items()},
            "caches": {
                "history": len(self.history_cache),
                "analysis": len(self.analysis_cache),
                "validation": len(self.validation_cache),
            },
            "queues": self.jobs.status(),
        }

    def clear_caches(self) -> None:
        self.history_cache.clear()
        self.analysis_cache.clear()
        self.validation_cache.clear()
        logger.info("[PIPELINE] All caches cleared")
