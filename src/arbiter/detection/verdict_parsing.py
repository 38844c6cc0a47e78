"""Parsing of model replies into structured verdicts.

Models are asked for strict JSON but routinely wrap it in prose or code
fences. :func:`extract_first_json_object` finds the first well-formed JSON
object anywhere in the text; :func:`parse_verdict` validates it against the
contract for one detection kind.

The result is either a :class:`ParsedVerdict` or an :class:`Unparseable`.
Callers treat ``Unparseable`` as a negative verdict.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import jsonschema
from jsonschema import ValidationError

from arbiter.datatypes.detection_datatypes import DetectionKind
from arbiter.util.logger import get_logger

logger = get_logger("verdict_parsing")

_decoder = json.JSONDecoder()


def _verdict_schema(kind: DetectionKind) -> Dict[str, Any]:
    properties: Dict[str, Any] = {
        kind.value: {"type": "string"},
        "reason": {"type": "string"},
        "evidence": {"type": "string"},
    }
    if kind is DetectionKind.MISINFORMATION:
        properties["url"] = {"type": "string"}
    return {
        "type": "object",
        "properties": properties,
        "required": [kind.value],
    }


VERDICT_SCHEMAS = {kind: _verdict_schema(kind) for kind in DetectionKind}


@dataclass(frozen=True, slots=True)
class ParsedVerdict:
    kind: DetectionKind
    verdict: str
    reason: str = ""
    evidence: str = ""
    url: str = ""

    @property
    def is_positive(self) -> bool:
        return self.verdict == "yes"


@dataclass(frozen=True, slots=True)
class Unparseable:
    kind: DetectionKind
    raw: str
    error: str

    @property
    def is_positive(self) -> bool:
        return False


Verdict = Union[ParsedVerdict, Unparseable]


def extract_first_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first well-formed JSON object embedded in ``text``, if any.

    Each ``{`` is tried as a starting point in turn, so leading prose,
    code fences and trailing commentary are all tolerated. Nested objects
    are decoded whole.
    """
    if not text:
        return None
    start = text.find("{")
    while start != -1:
        try:
            payload, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(payload, dict):
            return payload
        start = text.find("{", start + 1)
    return None


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_verdict(raw: str, kind: DetectionKind) -> Verdict:
    """Turn a model reply into a verdict for ``kind``. Never raises."""
    payload = extract_first_json_object(raw or "")
    if payload is None:
        logger.warning("[PARSE] No JSON object in %s reply (%d chars)", kind, len(raw or ""))
        return Unparseable(kind=kind, raw=raw or "", error="no JSON object found")

    try:
        jsonschema.validate(instance=payload, schema=VERDICT_SCHEMAS[kind])
    except ValidationError as exc:
        logger.warning("[PARSE] %s reply failed schema validation: %s", kind, exc.message)
        return Unparseable(kind=kind, raw=raw, error=exc.message)

    verdict = payload[kind.value].strip().lower()
    if verdict not in ("yes", "no"):
        logger.warning("[PARSE] %s verdict %r is neither yes nor no", kind, verdict)
        return Unparseable(kind=kind, raw=raw, error=f"unexpected verdict {verdict!r}")

    return ParsedVerdict(
        kind=kind,
        verdict=verdict,
        reason=_as_text(payload.get("reason")),
        evidence=_as_text(payload.get("evidence")),
        url=_as_text(payload.get("url")),
    )
