"""
Substantiveness scoring for candidate messages.

The score starts at 0.5 and moves with a fixed set of signals:

    high-impact topic           +0.4
    definitive/negating claim   +0.3
    evidence markers            +0.2
    absolute language           +0.1
    longer than 50 chars        +0.1
    reasoning connective        +0.1
    uncertainty markers         -0.1
    shorter than 20 chars       -0.1  (not applied to high-impact topics)

Fragments shorter than ``VERY_SHORT_LENGTH`` without a high-impact topic are
capped at ``VERY_SHORT_CEILING``. The result is clamped to ``[0, 1]``.
"""

from __future__ import annotations

from typing import List, Optional

from arbiter.cache.lru_cache import TTLCache
from arbiter.datatypes.detection_datatypes import ContentAnalysis
from arbiter.detection.vocabulary import (
    ABSOLUTE_MARKERS,
    DEFINITIVE_MARKERS,
    EVIDENCE_MARKERS,
    HIGH_IMPACT_TOPICS,
    REASONING_CONNECTIVES,
    TEMPORAL_MARKERS,
    UNCERTAINTY_MARKERS,
    compile_markers,
)
from arbiter.util.logger import get_logger

logger = get_logger("content_analyzer")

SUBSTANTIVENESS_THRESHOLD = 0.3
BASELINE = 0.5
SHORT_LENGTH = 20
LONG_LENGTH = 50
VERY_SHORT_LENGTH = 10
VERY_SHORT_CEILING = 0.2

_UNCERTAINTY = compile_markers(UNCERTAINTY_MARKERS)
_TEMPORAL = compile_markers(TEMPORAL_MARKERS)
_ABSOLUTE = compile_markers(ABSOLUTE_MARKERS)
_EVIDENCE = compile_markers(EVIDENCE_MARKERS)
_DEFINITIVE = compile_markers(DEFINITIVE_MARKERS)
_CONNECTIVE = compile_markers(REASONING_CONNECTIVES)


def normalize_content(content: str) -> str:
    """Cache key form of a message: trimmed, lower-cased, whitespace collapsed."""
    return " ".join(content.lower().split())


def has_high_impact_topic(lower: str) -> bool:
    return any(topic in lower for topic in HIGH_IMPACT_TOPICS)


def _recommendations(analysis_flags: dict, substantiveness: float) -> List[str]:
    notes: List[str] = []
    if analysis_flags["uncertainty"]:
        notes.append("Consider uncertainty markers when evaluating definitiveness")
    if analysis_flags["temporal"]:
        notes.append("Account for temporal context in contradiction detection")
    if analysis_flags["absolute"] and not analysis_flags["evidence"]:
        notes.append("Absolute claims require strong evidence")
    if substantiveness < SUBSTANTIVENESS_THRESHOLD:
        notes.append("Low substantiveness - may not warrant detailed analysis")
    return notes


def analyze(content: str) -> ContentAnalysis:
    """Score ``content`` and collect its language flags. Pure."""
    text = content.strip()
    lower = text.lower()

    flags = {
        "uncertainty": bool(_UNCERTAINTY.search(lower)),
        "temporal": bool(_TEMPORAL.search(lower)),
        "absolute": bool(_ABSOLUTE.search(lower)),
        "evidence": bool(_EVIDENCE.search(lower)),
    }
    high_impact = has_high_impact_topic(lower)

    score = BASELINE
    if high_impact:
        score += 0.4
    if _DEFINITIVE.search(lower):
        score += 0.3
    if flags["evidence"]:
        score += 0.2
    if flags["absolute"]:
        score += 0.1
    if len(text) > LONG_LENGTH:
        score += 0.1
    if _CONNECTIVE.search(lower):
        score += 0.1

    if flags["uncertainty"]:
        score -= 0.1
    if len(text) < SHORT_LENGTH and not high_impact:
        score -= 0.1
    if len(text) < VERY_SHORT_LENGTH and not high_impact:
        score = min(score, VERY_SHORT_CEILING)

    score = round(max(0.0, min(1.0, score)), 4)

    return ContentAnalysis(
        substantiveness=score,
        has_uncertainty=flags["uncertainty"],
        has_temporal_qualifier=flags["temporal"],
        has_absolute_language=flags["absolute"],
        has_evidence_markers=flags["evidence"],
        has_high_impact_topic=high_impact,
        recommendations=_recommendations(flags, score),
    )


class ContentAnalyzer:
    """:func:`analyze` behind a TTL cache keyed on normalized content."""

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        threshold: float = SUBSTANTIVENESS_THRESHOLD,
    ) -> None:
        self._cache = cache
        self.threshold = threshold

    def analyze(self, content: str) -> ContentAnalysis:
        key = normalize_content(content)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        result = analyze(content)
        if self._cache is not None:
            self._cache.set(key, result)
        logger.debug("[ANALYZER] substantiveness=%.2f for %r", result.substantiveness, key[:50])
        return result

    def is_substantive(self, analysis: ContentAnalysis) -> bool:
        return analysis.substantiveness >= self.threshold
