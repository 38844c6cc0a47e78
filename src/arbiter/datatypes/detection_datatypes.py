"""
Detection results and content-analysis records.

These are derived values. The message store remains the system of record;
nothing here is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class DetectionKind(Enum):
    """The two detection tracks."""

    CONTRADICTION = "contradiction"
    MISINFORMATION = "misinformation"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class DetectionResult:
    """A positive finding from one detection track.

    Attributes:
        kind: Which track produced the finding.
        verdict: Always ``"yes"`` for results surfaced to callers; negative
            verdicts are represented by ``None`` at the track boundary.
        reason: Model-provided explanation.
        evidence_quote: For contradictions, the matched prior statement as it
            exists in history; for misinformation, the falsifying web excerpt.
        evidence_url: Deep link to the prior message, or the cited source URL.
        evidence_message_id: Platform id of the contradicting message, if any.
    """

    kind: DetectionKind
    verdict: str
    reason: str
    evidence_quote: str = ""
    evidence_url: str = ""
    evidence_message_id: Optional[str] = None

    @property
    def is_positive(self) -> bool:
        return self.verdict == "yes"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            str(self.kind): self.verdict,
            "reason": self.reason,
            "evidence": self.evidence_quote,
            "url": self.evidence_url,
        }


@dataclass(frozen=True, slots=True)
class DetectionOutcome:
    """Combined result of both tracks for one message."""

    contradiction: Optional[DetectionResult] = None
    misinformation: Optional[DetectionResult] = None

    @property
    def has_findings(self) -> bool:
        return self.contradiction is not None or self.misinformation is not None


@dataclass(frozen=True, slots=True)
class ContentAnalysis:
    """Substantiveness score and language flags for a message.

    ``substantiveness`` is clamped to ``[0, 1]``; both detection tracks skip
    content that scores below the configured threshold.
    """

    substantiveness: float
    has_uncertainty: bool = False
    has_temporal_qualifier: bool = False
    has_absolute_language: bool = False
    has_evidence_markers: bool = False
    has_high_impact_topic: bool = False
    recommendations: List[str] = field(default_factory=list)
