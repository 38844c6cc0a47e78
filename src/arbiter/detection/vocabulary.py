"""
Keyword tables used by the pre-filter, the content analyzer and the
contradiction validator.

Everything here is plain data. Logic lives in the modules that consume it,
so the tables can be extended without touching control flow.
"""

from __future__ import annotations

import re
from typing import Dict, FrozenSet, List, Pattern, Tuple

# Commands of other bots sharing the server. Matched case-insensitively as
# prefixes of the stripped message.
KNOWN_BOT_COMMANDS: Tuple[str, ...] = (
    "!purge", "!silence", "!user", "!cleanrapsheet", "!rapsheet",
    "!charge", "!cite", "!book", "!editdailytopic", "<@&13405551155400003624>",
    "!boot", "!!!", "!editRapSheet", "!ban", "!editDemographics", "!selection",
    "$selection", "<@&1333261940235047005>", "<@&1333490526296477716>", "<@&1328638724778627094>",
    "<@&1333264620869128254>", "<@&1333223047385059470>", "<@&1333222016710611036>", "<@&1334073571638644760>",
    "<@&1335152063067324478>", "<@&1336979693844434987>", "<@&1340140409732468866>", "<@&1317770083375775764>",
    "<@&1317766628569518112>", "<@&1392325053432987689>", "!define", "&poll", "$demographics", "Surah",
    "!surah", "<@&1334820484440657941>", "!mimic", "$!", "!$", "$$", "<@&1399605580502405120>", "!arraign",
    "!trialReset", "!release", "!mark", "!flag", "/endthread", ".newPollButton", "!webhook", "!goTrigger", "!&",
    "!eval", "!chart", "&test", "++",
)

# Fillers and reactions that never carry a claim on their own.
SAFE_VOCABULARY: FrozenSet[str] = frozenset({
    "hello", "hi", "hey", "ok", "okay", "yes", "no", "lol", "sure", "cool", "nice", "thanks",
    "thank you", "hey arbiter", "sup", "idk", "good morning", "good night", "haha", "lmao",
    "brb", "ttyl", "gtg", "omg", "wtf", "tbh", "imo", "ngl", "fr", "bet", "facts", "cap",
    "no cap", "word", "mood", "same", "this", "that", "what", "who", "when", "where", "why",
    "rip", "f", "oof", "yikes", "cringe", "based", "ratio", "w", "l", "cope", "seethe",
    "touch grass", "skill issue", "imagine", "sus", "among us", "poggers", "sheesh", "bussin",
})

# Whole-message patterns, tried in order after the vocabulary lookup.
TRIVIAL_PATTERNS: Dict[str, Pattern[str]] = {
    "only_punctuation": re.compile(r"^[.!?,:;'\"()\[\]{}\-_+=<>|\\/~`^*&%$#@]+$"),
    "repeated_chars": re.compile(r"^(.)\1{2,}$"),
    "only_numbers": re.compile(r"^\d+$"),
    "short_acronym": re.compile(r"^[a-z]{1,3}$"),
    "reaction_text": re.compile(r"^(same|this|true|real|facts|\+1|-1|agree|disagree)$"),
    "filler_phrases": re.compile(
        r"^(anyway|so|well|like|actually|basically|literally|honestly|obviously|clearly"
        r"|wait|hold up|bruh|bro|dude|man|yo)$"
    ),
    "simple_questions": re.compile(r"^(what|who|when|where|why|how|really|seriously)\??$"),
    "acknowledgments": re.compile(
        r"^(got it|i see|makes sense|fair enough|right|exactly|precisely|indeed|correct|wrong"
        r"|nope|yep|yup|nah)$"
    ),
}

# Messages shorter than this are trivial; longer than LONG_MESSAGE_LENGTH never are.
MIN_MESSAGE_LENGTH = 4
LONG_MESSAGE_LENGTH = 200

UNCERTAINTY_MARKERS: Tuple[str, ...] = (
    "maybe", "perhaps", "possibly", "might", "could", "i think", "i believe", "seems like", "appears",
)

TEMPORAL_MARKERS: Tuple[str, ...] = (
    "used to", "previously", "before", "now", "currently", "today", "at first", "initially", "later", "then",
)

ABSOLUTE_MARKERS: Tuple[str, ...] = (
    "all", "every", "none", "never", "always", "definitely", "certainly",
)

EVIDENCE_MARKERS: Tuple[str, ...] = (
    "study", "research", "data", "proven", "evidence", "source", "according to",
)

DEFINITIVE_MARKERS: Tuple[str, ...] = (
    "don't work", "doesn't work", "do not work", "does not work",
    "cause", "causes", "prevent", "prevents", "cure", "cures",
    "are dangerous", "is dangerous", "are safe", "is safe",
    "never", "always", "all", "none", "every", "no",
)

REASONING_CONNECTIVES: Tuple[str, ...] = ("because", "therefore", "thus")

# Matched as substrings so stems cover plurals ("vaccine" -> "vaccines").
HIGH_IMPACT_TOPICS: Tuple[str, ...] = (
    "vaccine", "medicine", "drug", "treatment", "cure", "disease", "health", "covid", "cancer",
    "climate", "global warming", "earth", "evolution", "science", "study", "research",
    "election", "vote", "government", "conspiracy", "holocaust", "assassination",
)

# Subject clusters for the validator's topic check (substring match).
TOPIC_CLUSTERS: Dict[str, Tuple[str, ...]] = {
    "vaccines": ("vaccine", "vaccination", "immunization", "shot", "jab"),
    "elections": ("election", "vote", "trump", "biden", "president", "electoral"),
    "earth": ("earth", "planet", "world", "globe", "flat", "round", "sphere"),
    "climate": ("climate", "global warming", "temperature", "carbon", "emissions"),
    "health": ("health", "medicine", "drug", "treatment", "cure", "disease"),
    "ghosts": ("ghost", "spirit", "supernatural", "paranormal", "haunted"),
    "aliens": ("alien", "ufo", "extraterrestrial", "space", "abduction"),
    "science": ("science", "scientific", "research", "study", "experiment"),
    "religion": ("god", "jesus", "christian", "islam", "religion", "faith", "bible"),
}

# (assertion, negation) pairs. One statement matching the assertion while the
# other matches the negation is the only positive signal the validator has.
# The bare copula pattern also matches inside "is not", so any copula on one
# side against a negated copula on the other confirms the pair, whatever the
# predicates. Only the upstream model verdict and the topic rule keep
# unrelated pairs out.
NEGATION_PAIRS: List[Tuple[Pattern[str], Pattern[str]]] = [
    (re.compile(p), re.compile(n))
    for p, n in (
        (r"\b(is|are|was|were)\b", r"\b(is not|are not|was not|were not|isn't|aren't|wasn't|weren't)\b"),
        (r"\bexists?\b", r"\b(don't|doesn't|do not|does not) exist\b"),
        (r"\btrue\b", r"\b(false|not true|untrue)\b"),
        (r"\breal\b", r"\b(fake|not real|unreal)\b"),
        (r"\bhappened\b", r"\b(never happened|didn't happen)\b"),
        (r"\bcauses?\b", r"\b(don't cause|doesn't cause|do not cause)\b"),
        (r"\bsafe\b", r"\b(dangerous|unsafe|harmful)\b"),
        (r"\beffective\b", r"\b(ineffective|useless)\b"),
    )
]

# Words that describe the same idea. Two statements both drawing on one
# cluster are treated as agreeing, not contradicting.
AGREEMENT_CLUSTERS: Tuple[Tuple[str, ...], ...] = (
    ("flat", "disc", "pancake", "plane"),
    ("round", "spherical", "ball", "globe"),
    ("big", "large", "huge", "massive"),
    ("small", "tiny", "little", "miniature"),
    ("good", "great", "excellent", "amazing"),
    ("bad", "terrible", "awful", "horrible"),
    ("definitely", "certainly", "absolutely", "clearly"),
    ("maybe", "possibly", "perhaps", "might"),
    ("always", "constantly", "forever", "permanently"),
    ("never", "not ever", "at no time"),
    ("proven", "confirmed", "verified", "established"),
    ("disproven", "debunked", "falsified", "refuted"),
)


def compile_markers(markers: Tuple[str, ...]) -> Pattern[str]:
    """Compile a marker list into one whole-word, case-insensitive pattern."""
    alternatives = "|".join(re.escape(m) for m in sorted(markers, key=len, reverse=True))
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)
