"""Deterministic RFP ambiguity rules.

Contradictions and vague quantifiers are rows in the tables below; the
detector walks them without knowing any specific wording.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from grantguard.schemas.enforcement import AmbiguityFlag, AmbiguityType

CONTRADICTION_RESOLUTIONS = [
    "Prioritize being comprehensive while maintaining clarity",
    "Focus on key points with supporting detail",
    "Contact funder for clarification",
]

VAGUE_RESOLUTIONS = [
    "Use industry standards or funder's typical awards as reference",
    "Be specific and justify your approach",
    "Contact funder for clarification",
]

LIMIT_RESOLUTIONS = [
    "Prioritize word limit as it's more precise",
    "Assume standard formatting (250-300 words per page)",
    "Contact funder to confirm which limit takes precedence",
]

MIN_WORDS_PER_PAGE = 200
MAX_WORDS_PER_PAGE = 600


@dataclass(frozen=True)
class ContradictionRule:
    """Terms that conflict when an RFP uses all of them."""
    terms: Tuple[str, ...]
    requires_user_input: bool = True


@dataclass(frozen=True)
class VagueRule:
    """Pattern for a requirement with no measurable criteria."""
    name: str
    pattern: Pattern
    requires_user_input: bool = False


CONTRADICTION_RULES: List[ContradictionRule] = [
    ContradictionRule(("brief", "comprehensive")),
    ContradictionRule(("concise", "thorough")),
    ContradictionRule(("short", "detailed")),
    ContradictionRule(("summary", "comprehensive overview")),
]

VAGUE_RULES: List[VagueRule] = [
    VagueRule(
        "vague_resources",
        re.compile(r"\b(?:adequate|appropriate|sufficient)\s+(?:budget|staffing|resources)", re.IGNORECASE),
    ),
    VagueRule(
        "vague_amount",
        re.compile(r"\b(?:reasonable|modest)\s+(?:amount|funding|request)", re.IGNORECASE),
    ),
    VagueRule("as_needed", re.compile(r"\bas\s+needed\b", re.IGNORECASE)),
]

PAGE_LIMIT_RE = re.compile(r"(\d+)\s*(?:page|pg)s?\s*(?:maximum|max|limit)?", re.IGNORECASE)
WORD_LIMIT_RE = re.compile(r"(\d+)\s*(?:word)s?\s*(?:maximum|max|limit)?", re.IGNORECASE)


def find_context_for_term(text: str, term: str) -> str:
    """Sentence of ``text`` containing ``term``, or the term itself."""
    idx = text.lower().find(term.lower())
    if idx < 0:
        return term
    start = text.rfind(".", 0, idx) + 1
    end = text.find(".", idx)
    return text[start:end + 1 if end >= 0 else len(text)].strip()


def detect_contradictions(text: str) -> List[AmbiguityFlag]:
    text_lower = text.lower()
    flags = []
    for rule in CONTRADICTION_RULES:
        found = [t for t in rule.terms if t in text_lower]
        if len(found) < 2:
            continue
        quoted = '" and "'.join(found)
        flags.append(AmbiguityFlag(
            type=AmbiguityType.CONTRADICTORY,
            description=f'Potentially contradictory requirements: "{quoted}"',
            source_texts=[find_context_for_term(text, t) for t in found],
            suggested_resolutions=list(CONTRADICTION_RESOLUTIONS),
            requires_user_input=rule.requires_user_input,
        ))
    return flags


def detect_vague_requirements(text: str) -> List[AmbiguityFlag]:
    flags = []
    for rule in VAGUE_RULES:
        for match in rule.pattern.finditer(text):
            phrase = match.group(0)
            flags.append(AmbiguityFlag(
                type=AmbiguityType.VAGUE,
                description=f'Vague requirement: "{phrase}" - no specific criteria provided',
                source_texts=[find_context_for_term(text, phrase)],
                suggested_resolutions=list(VAGUE_RESOLUTIONS),
                requires_user_input=rule.requires_user_input,
            ))
    return flags


def detect_limit_mismatch(text: str) -> Optional[AmbiguityFlag]:
    """Flag page and word limits that imply an unusual words-per-page ratio."""
    page_match = PAGE_LIMIT_RE.search(text)
    word_match = WORD_LIMIT_RE.search(text)
    if not page_match or not word_match:
        return None

    pages = int(page_match.group(1))
    words = int(word_match.group(1))
    if pages <= 0 or words <= 0:
        return None

    words_per_page = words / pages
    if MIN_WORDS_PER_PAGE <= words_per_page <= MAX_WORDS_PER_PAGE:
        return None

    return AmbiguityFlag(
        type=AmbiguityType.SCOPE_UNCLEAR,
        description=f"Page limit ({pages}) and word limit ({words}) may be inconsistent",
        source_texts=[page_match.group(0).strip(), word_match.group(0).strip()],
        suggested_resolutions=list(LIMIT_RESOLUTIONS),
        requires_user_input=True,
    )


def detect_deterministic(text: str) -> List[AmbiguityFlag]:
    """All rule-based ambiguities in ``text``, in table order."""
    if not text:
        return []
    flags = detect_contradictions(text)
    flags.extend(detect_vague_requirements(text))
    mismatch = detect_limit_mismatch(text)
    if mismatch is not None:
        flags.append(mismatch)
    return flags
