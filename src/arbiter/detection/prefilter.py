"""
Zero-cost message pre-filter.

Decides, before any paid call happens, whether a message is worth
inspecting. Checks run from cheapest to most expensive and return at the
first decisive one. Everything here is pure.
"""

from __future__ import annotations

import unicodedata
from typing import Optional

from arbiter.detection.vocabulary import (
    KNOWN_BOT_COMMANDS,
    LONG_MESSAGE_LENGTH,
    MIN_MESSAGE_LENGTH,
    SAFE_VOCABULARY,
    TRIVIAL_PATTERNS,
)

_COMMAND_PREFIXES = tuple(cmd.lower() for cmd in KNOWN_BOT_COMMANDS)

# Zero-width joiner and variation selectors glue emoji sequences together.
_EMOJI_JOINERS = {"\u200d", "\ufe0e", "\ufe0f", "\u20e3"}


def _is_emoji_or_punctuation(text: str) -> bool:
    """True when every character is whitespace, punctuation, a symbol or an emoji joiner."""
    for char in text:
        if char.isspace() or char in _EMOJI_JOINERS:
            continue
        category = unicodedata.category(char)
        if category[0] in ("P", "S") or category == "Mn":
            continue
        return False
    return True


def is_foreign_command(content: Optional[str]) -> bool:
    """Return True if ``content`` starts with a command of another bot."""
    if not content:
        return False
    return content.strip().lower().startswith(_COMMAND_PREFIXES)


def is_trivial(content: Optional[str]) -> bool:
    """Return True if ``content`` carries nothing worth analysing.

    Empty and very short messages are trivial; long ones never are. In
    between, a message is trivial when it is a known filler phrase, matches
    one of the canned patterns, is a single word, repeats one word up to
    three times, or is five words or fewer all drawn from the filler
    vocabulary.
    """
    if not content or not isinstance(content, str):
        return True

    trimmed = content.strip()
    lower = trimmed.lower()

    if len(trimmed) < MIN_MESSAGE_LENGTH:
        return True
    if len(trimmed) > LONG_MESSAGE_LENGTH:
        return False

    if lower in SAFE_VOCABULARY:
        return True

    if _is_emoji_or_punctuation(trimmed):
        return True
    if any(pattern.match(lower) for pattern in TRIVIAL_PATTERNS.values()):
        return True

    words = lower.split()
    if len(words) == 1:
        return True
    if len(words) <= 3 and len(set(words)) == 1:
        return True
    if len(words) <= 5 and all(word in SAFE_VOCABULARY for word in words):
        return True

    return False


def should_skip(content: Optional[str]) -> bool:
    """Combined gate: trivial messages and foreign commands are never inspected."""
    return is_trivial(content) or is_foreign_command(content)
