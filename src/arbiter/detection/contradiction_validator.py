"""
Rule-based re-validation of model-flagged contradictions.

The generation service is asked to find contradictions and is wrong often
enough that every "yes" it returns is re-checked here. Rules run in order
and the first decisive one wins:

1. identical normalized text       -> not a contradiction
2. disjoint topic clusters         -> not a contradiction
3. (assertion, negation) pair      -> contradiction
4. shared agreement cluster        -> not a contradiction
5. uncertainty language            -> not a contradiction
6. temporal qualifiers             -> not a contradiction
7. otherwise                       -> contradiction
"""

from __future__ import annotations

import logging
import re
from typing import FrozenSet, Optional, Tuple

from arbiter.cache.lru_cache import TTLCache
from arbiter.detection.vocabulary import (
    AGREEMENT_CLUSTERS,
    NEGATION_PAIRS,
    TEMPORAL_MARKERS,
    TOPIC_CLUSTERS,
    UNCERTAINTY_MARKERS,
    compile_markers,
)
from arbiter.util.logger import get_logger

logger = get_logger("contradiction_validator")

_UNCERTAINTY = compile_markers(UNCERTAINTY_MARKERS)
_TEMPORAL = compile_markers(TEMPORAL_MARKERS)
_AGREEMENT = [compile_markers(cluster) for cluster in AGREEMENT_CLUSTERS]


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower().strip())


def topics_of(text: str) -> FrozenSet[str]:
    """Topic clusters whose keywords appear in ``text`` (already lower-cased)."""
    return frozenset(
        name for name, keywords in TOPIC_CLUSTERS.items() if any(k in text for k in keywords)
    )


def _negation_pair(s1: str, s2: str) -> Optional[str]:
    for positive, negative in NEGATION_PAIRS:
        s1_pos, s1_neg = bool(positive.search(s1)), bool(negative.search(s1))
        s2_pos, s2_neg = bool(positive.search(s2)), bool(negative.search(s2))
        if (s1_pos and s2_neg) or (s1_neg and s2_pos):
            return positive.pattern
    return None


def validate_contradiction(
    history_statement: str,
    current_statement: str,
    log: Optional[logging.Logger | logging.LoggerAdapter] = None,
) -> bool:
    """Return True when the pair may stand as a contradiction."""
    log = log or logger
    s1 = _normalize(history_statement)
    s2 = _normalize(current_statement)

    if s1 == s2:
        log.debug("[VALIDATOR] Identical statements - not a contradiction")
        return False

    t1, t2 = topics_of(s1), topics_of(s2)
    if t1 and t2 and t1.isdisjoint(t2):
        log.debug("[VALIDATOR] Topic mismatch %s vs %s - not a contradiction", sorted(t1), sorted(t2))
        return False

    pattern = _negation_pair(s1, s2)
    if pattern is not None:
        log.debug("[VALIDATOR] Negation pair on %s - contradiction confirmed", pattern)
        return True

    for cluster in _AGREEMENT:
        if cluster.search(s1) and cluster.search(s2):
            log.debug("[VALIDATOR] Shared agreement cluster %s - not a contradiction", cluster.pattern[:40])
            return False

    if _UNCERTAINTY.search(s1) or _UNCERTAINTY.search(s2):
        log.debug("[VALIDATOR] Uncertainty language - not a definitive contradiction")
        return False

    if _TEMPORAL.search(s1) or _TEMPORAL.search(s2):
        log.debug("[VALIDATOR] Temporal qualifier - positions may have evolved")
        return False

    log.debug("[VALIDATOR] No disqualifying factor - contradiction allowed")
    return True


class ContradictionValidator:
    """Memoizing front for :func:`validate_contradiction`.

    The cache key is the exact ``(evidence, current)`` pair as received.
    The pair is immutable once observed, so the cache is size-bounded only.
    """

    def __init__(self, cache: Optional[TTLCache] = None) -> None:
        self._cache = cache if cache is not None else TTLCache(1000, ttl_seconds=None, name="validation")

    def validate(
        self,
        evidence: str,
        current: str,
        log: Optional[logging.Logger | logging.LoggerAdapter] = None,
    ) -> bool:
        key: Tuple[str, str] = (evidence, current)
        cached = self._cache.get(key)
        if cached is not None:
            (log or logger).debug("[VALIDATOR] Using cached validation result")
            return cached
        result = validate_contradiction(evidence, current, log)
        self._cache.set(key, result)
        return result

    def __len__(self) -> int:
        return len(self._cache)
