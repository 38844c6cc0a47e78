"""Plain-text rendering of detection alerts and replies for Discord."""

from __future__ import annotations

from typing import Iterable, Optional

from arbiter.datatypes.detection_datatypes import DetectionOutcome, DetectionResult

DISCORD_MESSAGE_LIMIT = 1950


def truncate_message(content: str, max_length: int = DISCORD_MESSAGE_LIMIT) -> str:
    """Cut ``content`` to fit one Discord message, preferring a word boundary."""
    if not content or len(content) <= max_length:
        return content
    truncated = content[:max_length]
    last_space = truncated.rfind(" ")
    cut = last_space if last_space > max_length * 0.8 else max_length
    return content[:cut] + "... [truncated]"


def _contradiction_block(result: DetectionResult, current: str) -> str:
    return f"-# ```{result.evidence_quote}```\n-# ```{current}```\n{result.reason}"


def _misinformation_block(result: DetectionResult) -> str:
    lines = [f"Reason: {result.reason}"]
    if result.evidence_quote:
        lines.append(f"Evidence: {result.evidence_quote}")
    if result.evidence_url:
        lines.append(f"Source: <{result.evidence_url}>")
    return "\n".join(lines)


def format_detection_alert(outcome: DetectionOutcome, current_content: str) -> Optional[str]:
    """Alert text for an outcome, or ``None`` when there is nothing to report."""
    contradiction, misinformation = outcome.contradiction, outcome.misinformation

    if contradiction is not None and misinformation is not None:
        text = (
            "**CONTRADICTION & MISINFORMATION DETECTED**\n\n"
            "**CONTRADICTION FOUND:**\n"
            f"{_contradiction_block(contradiction, current_content)}\n\n"
            "**MISINFORMATION FOUND:**\n"
            f"**False claim:** {current_content}\n"
            f"{_misinformation_block(misinformation)}"
        )
    elif contradiction is not None:
        text = "**CONTRADICTION DETECTED**\n\n" + _contradiction_block(contradiction, current_content)
    elif misinformation is not None:
        text = "**MISINFORMATION DETECTED**\n" + _misinformation_block(misinformation)
    else:
        return None
    return truncate_message(text)


def format_sources(sources: Iterable[str], limit: int = 5) -> str:
    urls = list(sources)[:limit]
    if not urls:
        return ""
    return "\n\n**Sources:**\n" + "\n".join(f"- <{url}>" for url in urls)
