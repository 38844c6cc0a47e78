"""
Two-track detection for a single message.

Track A (contradiction) compares the message against the author's own
prior statements in the same channel. Track B (misinformation) checks it
against web evidence. Track B runs whatever Track A concludes.

Each track has a raising core (``run_*``) and an absorbing wrapper
(``check_*``). Queue workers call the core so transient upstream failures
are retried with backoff; the synchronous :meth:`DetectionOrchestrator.detect`
path calls the wrappers, which turn every failure into ``None``.

Track B has no counterpart to Track A's evidence matching and rule-based
re-validation. A positive misinformation verdict is returned as the model
gave it, with the cited URL.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, Sequence, Union

from arbiter.configuration.app_configuration import DetectionSettings
from arbiter.core.errors import UnverifiableEvidence
from arbiter.datatypes.detection_datatypes import DetectionKind, DetectionOutcome, DetectionResult
from arbiter.datatypes.message_datatypes import MessageRecord
from arbiter.detection import prompts
from arbiter.detection.content_analyzer import ContentAnalyzer
from arbiter.detection.contradiction_validator import ContradictionValidator
from arbiter.detection.prefilter import is_trivial, should_skip
from arbiter.detection.verdict_parsing import ParsedVerdict, parse_verdict
from arbiter.resilience.concurrency_gate import PriorityClass
from arbiter.services.generation_service import GenerationService
from arbiter.services.web_search_client import WebSearchClient, clean_url
from arbiter.util.logger import correlated, generate_correlation_id, get_logger

logger = get_logger("detection_orchestrator")

LogLike = Union[logging.Logger, logging.LoggerAdapter]


class HistoryProvider(Protocol):
    async def fetch_user_messages_for_detection(
        self, record: MessageRecord, limit: int = 50
    ) -> list[MessageRecord]: ...


def substantive_prior(record: MessageRecord, history: Sequence[MessageRecord]) -> list[MessageRecord]:
    """Non-trivial prior messages of the author, newest first, without ``record`` itself."""
    return [m for m in history if m.id != record.id and not is_trivial(m.content)]


def locate_evidence(quote: str, prior: Sequence[MessageRecord]) -> MessageRecord:
    """Find the prior message a model quoted.

    Exact match on trimmed text first, then containment in either direction.

    Raises:
        UnverifiableEvidence: If the quote is empty or matches nothing.
    """
    needle = (quote or "").strip()
    if not needle:
        raise UnverifiableEvidence("model cited no evidence")

    for message in prior:
        if message.content.strip() == needle:
            return message

    for message in prior:
        text = message.content.strip()
        if text and (needle in text or text in needle):
            return message

    raise UnverifiableEvidence(f"quoted evidence not found in history: {needle[:100]!r}")


class DetectionOrchestrator:
    """
    Runs both detection tracks through the analyzer, validator, gate and breakers.

    Args:
        generation: Generation service (gate class + breaker applied inside).
        web: Web answer/search client (gate class + breaker applied inside).
        analyzer: Cached content analyzer.
        validator: Cached contradiction validator.
        settings: Detection settings (length ceiling, window, principles flag).
        history: Source of the author's prior messages for :meth:`detect`.
    """

    def __init__(
        self,
        generation: GenerationService,
        web: WebSearchClient,
        analyzer: ContentAnalyzer,
        validator: ContradictionValidator,
        settings: Optional[DetectionSettings] = None,
        history: Optional[HistoryProvider] = None,
    ) -> None:
        self._generation = generation
        self._web = web
        self._analyzer = analyzer
        self._validator = validator
        self._settings = settings or DetectionSettings()
        self._history = history

    def _clip(self, text: str) -> str:
        return text[: self._settings.max_factcheck_chars]

    # ------------------------------------------------------------------
    # Track A
    # ------------------------------------------------------------------

    async def run_contradiction(
        self,
        record: MessageRecord,
        history: Sequence[MessageRecord],
        correlation_id: Optional[str] = None,
    ) -> Optional[DetectionResult]:
        """Contradiction track. Raises only for upstream failures.

        ``history`` is the author's prior messages in the channel, newest first.
        """
        log = correlated(logger, correlation_id, "contradiction")

        if should_skip(record.content):
            log.debug("[DETECTION] Filtered out (trivial or command)")
            return None

        prior = substantive_prior(record, history)
        if not prior:
            log.debug("[DETECTION] No substantive prior messages")
            return None
        if prior[0].content.strip() == record.content.strip():
            log.debug("[DETECTION] Duplicate of the latest prior message")
            return None

        current = self._clip(record.content)
        analysis = self._analyzer.analyze(current)
        if not self._analyzer.is_substantive(analysis):
            log.debug("[DETECTION] Low substantiveness %.2f", analysis.substantiveness)
            return None

        window = prior[: self._settings.history_window]
        statements = [self._clip(m.content) for m in reversed(window)]
        prompt = prompts.build_contradiction_prompt(
            current, statements, analysis, self._settings.logical_principles_enabled
        )

        log.debug("[DETECTION] Requesting contradiction verdict (%d prior, %d chars)", len(window), len(prompt))
        reply = await self._generation.generate_for(prompt, "contradiction", PriorityClass.BACKGROUND)

        verdict = parse_verdict(reply.text, DetectionKind.CONTRADICTION)
        if not isinstance(verdict, ParsedVerdict):
            log.warning("[DETECTION] Unparseable contradiction reply from %s: %s", reply.model_used, verdict.error)
            return None
        if not verdict.is_positive:
            return None

        try:
            evidence = locate_evidence(verdict.evidence, window)
        except UnverifiableEvidence as exc:
            log.warning("[DETECTION] Rejecting contradiction: %s", exc)
            return None

        if not self._validator.validate(evidence.content, record.content, log):
            log.info("[DETECTION] Contradiction rejected by semantic validation")
            return None

        log.info("[DETECTION] Contradiction confirmed against message %s", evidence.id)
        return DetectionResult(
            kind=DetectionKind.CONTRADICTION,
            verdict="yes",
            reason=verdict.reason,
            evidence_quote=evidence.content,
            evidence_url=evidence.deep_link(),
            evidence_message_id=evidence.id,
        )

    async def check_contradiction(
        self,
        record: MessageRecord,
        history: Sequence[MessageRecord],
        correlation_id: Optional[str] = None,
    ) -> Optional[DetectionResult]:
        try:
            return await self.run_contradiction(record, history, correlation_id)
        except Exception as exc:
            correlated(logger, correlation_id, "contradiction").error(
                "[DETECTION] Contradiction track failed: %s", exc
            )
            return None

    # ------------------------------------------------------------------
    # Track B
    # ------------------------------------------------------------------

    async def run_misinformation(
        self, record: MessageRecord, correlation_id: Optional[str] = None
    ) -> Optional[DetectionResult]:
        """Misinformation track. Raises only for upstream failures."""
        log = correlated(logger, correlation_id, "misinformation")

        if should_skip(record.content):
            return None
        claim = self._clip(record.content)
        if len(claim) < len(record.content):
            log.debug("[DETECTION] Fact-checking the first %d of %d chars", len(claim), len(record.content))

        answer = await self._web.answer(claim)
        if not answer.has_grounding:
            log.debug("[DETECTION] No web grounding, skipping classification")
            return None

        analysis = self._analyzer.analyze(claim)
        if not self._analyzer.is_substantive(analysis):
            log.debug("[DETECTION] Low substantiveness %.2f", analysis.substantiveness)
            return None

        prompt = prompts.build_misinformation_prompt(
            claim, answer.answer_text, analysis, self._settings.logical_principles_enabled
        )
        reply = await self._generation.generate_for(prompt, "misinformation", PriorityClass.FACT_CHECK)

        verdict = parse_verdict(reply.text, DetectionKind.MISINFORMATION)
        if not isinstance(verdict, ParsedVerdict):
            log.warning("[DETECTION] Unparseable misinformation reply from %s: %s", reply.model_used, verdict.error)
            return None
        if not verdict.is_positive:
            return None

        url = clean_url(verdict.url) if verdict.url else (answer.urls[0] if answer.urls else "")
        log.info("[DETECTION] Misinformation flagged")
        return DetectionResult(
            kind=DetectionKind.MISINFORMATION,
            verdict="yes",
            reason=verdict.reason,
            evidence_quote=verdict.evidence,
            evidence_url=url,
        )

    async def check_misinformation(
        self, record: MessageRecord, correlation_id: Optional[str] = None
    ) -> Optional[DetectionResult]:
        try:
            return await self.run_misinformation(record, correlation_id)
        except Exception as exc:
            correlated(logger, correlation_id, "misinformation").error(
                "[DETECTION] Misinformation track failed: %s", exc
            )
            return None

    # ------------------------------------------------------------------
    # Both tracks
    # ------------------------------------------------------------------

    async def _history_for(self, record: MessageRecord, log: LogLike) -> list[MessageRecord]:
        if self._history is None:
            return []
        try:
            return await self._history.fetch_user_messages_for_detection(record, self._settings.history_window)
        except Exception as exc:
            log.error("[DETECTION] History fetch failed: %s", exc)
            return []

    async def detect(self, record: MessageRecord, correlation_id: Optional[str] = None) -> DetectionOutcome:
        """Run both tracks in-process. Never raises."""
        correlation_id = correlation_id or generate_correlation_id()
        log = correlated(logger, correlation_id, "detection")

        if should_skip(record.content):
            log.debug("[DETECTION] Skipping detection, message filtered out")
            return DetectionOutcome()

        history = await self._history_for(record, log)
        contradiction, misinformation = await asyncio.gather(
            self.check_contradiction(record, history, correlation_id),
            self.check_misinformation(record, correlation_id),
        )
        return DetectionOutcome(contradiction=contradiction, misinformation=misinformation)
