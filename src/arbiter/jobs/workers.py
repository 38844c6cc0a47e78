"""
Job handlers, one per job type.

Detection handlers call the raising orchestrator tracks so upstream failures
are retried by the queue. Payloads carry the in-process objects directly
(``record``, ``history``, ``outcome``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from arbiter.configuration.app_configuration import DetectionSettings
from arbiter.datatypes.detection_datatypes import DetectionOutcome, DetectionResult
from arbiter.datatypes.message_datatypes import ChannelSummary, MessageRecord
from arbiter.detection import prompts
from arbiter.detection.orchestrator import DetectionOrchestrator
from arbiter.detection.prefilter import is_trivial
from arbiter.jobs.job_datatypes import Job, JobType
from arbiter.jobs.job_queue import JobHandler
from arbiter.resilience.concurrency_gate import PriorityClass
from arbiter.services.generation_service import GenerationService
from arbiter.services.history_service import HistoryService
from arbiter.services.web_search_client import SearchResult, WebSearchClient, clean_url
from arbiter.util.logger import correlated, get_logger

logger = get_logger("job_workers")

NEWS_PATTERN = re.compile(r"\b(news|headline|latest|article|current event|today)\b", re.IGNORECASE)
NEWS_TOPIC_PATTERN = re.compile(
    r"\b(?:news|latest|headlines?)\s+(?:about|on|regarding|for)?\s*([a-zA-Z\s]+?)(?:\s*$|[.!?])", re.IGNORECASE
)
DEFAULT_NEWS_TOPIC = "world events"

INSUFFICIENT_HISTORY_REPLY = "Not enough message history available for a quality reply. Truth sleeps."
TRIVIAL_CONVERSATION_REPLY = "Little of substance has been spoken here so far."


@dataclass(slots=True)
class ReplyResult:
    text: str
    sources: List[str] = field(default_factory=list)
    model_used: Optional[str] = None


def news_topic(content: str) -> Optional[str]:
    """Return the news topic a message asks about, or ``None`` if it asks for no news."""
    if not NEWS_PATTERN.search(content):
        return None
    match = NEWS_TOPIC_PATTERN.search(content)
    topic = match.group(1).strip() if match else ""
    return topic or DEFAULT_NEWS_TOPIC


def format_news_section(topic: str, results: Sequence[SearchResult]) -> str:
    if not results:
        return ""
    lines = [f"{i}. **{item.title}** - {item.snippet or 'No summary available'}" for i, item in enumerate(results, 1)]
    return f"\n\n**Latest News ({topic}):**\n" + "\n".join(lines)


def is_conversation_trivial(items: Sequence[MessageRecord | ChannelSummary]) -> bool:
    messages = [i for i in items if isinstance(i, MessageRecord)]
    return bool(messages) and all(is_trivial(m.content) for m in messages)


class JobWorkers:
    """
    Handlers for the four job types.

    Args:
        orchestrator: Detection tracks.
        generation: Generation service (summaries and replies).
        web: Web client (news and sources for replies).
        history: History service (reply context).
        settings: Detection settings (principles flag).
        today: Callable returning the current date, for news queries.
    """

    def __init__(
        self,
        orchestrator: DetectionOrchestrator,
        generation: GenerationService,
        web: WebSearchClient,
        history: HistoryService,
        settings: Optional[DetectionSettings] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._orchestrator = orchestrator
        self._generation = generation
        self._web = web
        self._history = history
        self._settings = settings or DetectionSettings()
        self._today = today

    def handlers(self) -> Dict[JobType, JobHandler]:
        return {
            JobType.CONTRADICTION: self.handle_contradiction,
            JobType.MISINFORMATION: self.handle_misinformation,
            JobType.SUMMARIZATION: self.handle_summarization,
            JobType.USER_REPLY: self.handle_user_reply,
        }

    async def handle_contradiction(self, job: Job) -> Optional[DetectionResult]:
        record: MessageRecord = job.payload["record"]
        history: Sequence[MessageRecord] = job.payload.get("history", ())
        return await self._orchestrator.run_contradiction(record, history, job.correlation_id)

    async def handle_misinformation(self, job: Job) -> Optional[DetectionResult]:
        return await self._orchestrator.run_misinformation(job.payload["record"], job.correlation_id)

    async def handle_summarization(self, job: Job) -> str:
        reply = await self._generation.generate_for(
            job.payload["prompt"], "summarization", PriorityClass.SUMMARIZATION
        )
        return reply.text

    async def _news(self, content: str, log) -> Tuple[str, List[str]]:
        topic = news_topic(content)
        if topic is None:
            return "", []
        log.info("[REPLY] Searching for news about %s", topic)
        try:
            results = await self._web.news_search(topic, result_count=3, today=self._today())
        except Exception as exc:
            log.warning("[REPLY] News search failed: %s", exc)
            return "", []
        return format_news_section(topic, results), [r.url for r in results if r.url]

    async def _fallback_sources(self, content: str, log) -> List[str]:
        try:
            answer = await self._web.answer(content)
        except Exception as exc:
            log.warning("[REPLY] Source lookup failed: %s", exc)
            return []
        return list(answer.urls)

    async def handle_user_reply(self, job: Job) -> ReplyResult:
        record: MessageRecord = job.payload["record"]
        bot_user_id: Optional[str] = job.payload.get("bot_user_id")
        outcome: Optional[DetectionOutcome] = job.payload.get("outcome")
        log = correlated(logger, job.correlation_id, "user_reply")

        user_history = await self._history.fetch_user_history(
            record.author_id, record.channel_id, record.scope_id, exclude_message_id=record.id
        )
        channel_history = await self._history.fetch_channel_history(
            record.channel_id, record.scope_id, exclude_message_id=record.id
        )
        if not user_history and not channel_history:
            return ReplyResult(INSUFFICIENT_HISTORY_REPLY)
        if is_conversation_trivial(channel_history):
            return ReplyResult(TRIVIAL_CONVERSATION_REPLY)

        news_section, sources = await self._news(record.content, log)
        prompt = prompts.build_reply_prompt(
            record,
            user_history,
            channel_history,
            bot_user_id=bot_user_id,
            news_section=news_section,
            outcome=outcome,
            use_logical_principles=self._settings.logical_principles_enabled,
        )
        reply = await self._generation.generate_for(prompt, "user_facing", PriorityClass.USER_REPLY)
        log.debug("[REPLY] Generated %d chars with %s", len(reply.text), reply.model_used)

        if not sources:
            sources = await self._fallback_sources(record.content, log)
        if outcome is not None and outcome.misinformation is not None and outcome.misinformation.evidence_url:
            sources.append(outcome.misinformation.evidence_url)

        cleaned = list(dict.fromkeys(u for u in (clean_url(s) for s in sources) if u.startswith("http")))
        return ReplyResult(reply.text, cleaned, reply.model_used)
