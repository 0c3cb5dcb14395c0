"""Placeholder token codec and detection.

Enforced placeholders are encoded as ``[[PLACEHOLDER:TYPE:DESCRIPTION:ID]]``.
The older informal ``[PLACEHOLDER: description]`` form is still recognized
as MISSING_DATA, except where it is the inner part of an enforced token.
"""

import hashlib
import re
from typing import List

from grantguard.schemas.enforcement import Placeholder, PlaceholderPosition, PlaceholderType

PLACEHOLDER_PREFIX = "[[PLACEHOLDER:"

# Description is non-greedy so it may contain colons; the id anchors the end.
PLACEHOLDER_RE = re.compile(
    r"\[\[PLACEHOLDER:(MISSING_DATA|USER_INPUT_REQUIRED|VERIFICATION_NEEDED):([^\]]+?):([A-Za-z0-9_]+)\]\]"
)
LEGACY_PLACEHOLDER_RE = re.compile(r"\[PLACEHOLDER:\s*([^\]]+?)\s*\]")
ANY_PLACEHOLDER_RE = re.compile(r"\[\[PLACEHOLDER:[^\]]*\]\]|\[PLACEHOLDER:[^\]]*\]")

BLOCKING_TYPES = frozenset({PlaceholderType.MISSING_DATA, PlaceholderType.USER_INPUT_REQUIRED})

# (keywords, suggested document types)
_SOURCE_HINTS = [
    (("budget", "financial"), ["AUDITED_FINANCIALS", "FORM_990"]),
    (("outcome", "impact", "result"), ["IMPACT_REPORT", "EVALUATION_REPORT"]),
    (("staff", "team"), ["STAFF_BIOS"]),
    (("program", "service"), ["PROGRAM_DESCRIPTION"]),
    (("organization", "history", "mission"), ["ORG_OVERVIEW", "ANNUAL_REPORT"]),
]


def make_placeholder_id(prefix: str, *parts) -> str:
    """Deterministic token id derived from the content it stands in for."""
    digest = hashlib.sha1("\x1f".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return f"{prefix}_{digest[:12]}"


def clean_description(description: str) -> str:
    """Make free text safe to embed inside a placeholder token."""
    cleaned = description.replace("[", "(").replace("]", ")")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned or "No description"


def create_placeholder(placeholder_type: PlaceholderType, description: str, placeholder_id: str) -> str:
    """Encode a placeholder token.

    Args:
        placeholder_type: Placeholder kind
        description: Human-readable description; brackets are neutralized
        placeholder_id: Token id of letters, digits and underscores

    Returns:
        The encoded ``[[PLACEHOLDER:...]]`` token
    """
    placeholder_type = PlaceholderType(placeholder_type)
    if not re.fullmatch(r"[A-Za-z0-9_]+", placeholder_id or ""):
        raise ValueError(f"Invalid placeholder id: {placeholder_id!r}")
    return f"{PLACEHOLDER_PREFIX}{placeholder_type.value}:{clean_description(description)}:{placeholder_id}]]"


def contains_placeholder(text: str) -> bool:
    return bool(ANY_PLACEHOLDER_RE.search(text or ""))


def contains_blocking_placeholder(text: str) -> bool:
    """True when the text holds a MISSING_DATA, USER_INPUT_REQUIRED or legacy token."""
    for placeholder in detect_placeholders(text):
        if placeholder.type in BLOCKING_TYPES:
            return True
    return False


def strip_placeholders(text: str, placeholder_type: PlaceholderType = None) -> str:
    """Remove placeholder tokens, optionally only those of one type."""
    if placeholder_type is None:
        return ANY_PLACEHOLDER_RE.sub(" ", text)
    wanted = PlaceholderType(placeholder_type).value
    return PLACEHOLDER_RE.sub(lambda m: " " if m.group(1) == wanted else m.group(0), text)


def mask_placeholders(text: str) -> str:
    """Blank out placeholder tokens, keeping every other character's offset."""
    return ANY_PLACEHOLDER_RE.sub(lambda m: " " * len(m.group(0)), text)


def get_suggested_sources(placeholder_type: PlaceholderType, description: str) -> List[str]:
    """Suggest knowledge-base document types that could fill a placeholder."""
    desc_lower = description.lower()
    suggestions: List[str] = []
    for keywords, sources in _SOURCE_HINTS:
        if any(k in desc_lower for k in keywords):
            suggestions.extend(s for s in sources if s not in suggestions)

    if not suggestions:
        if PlaceholderType(placeholder_type) == PlaceholderType.MISSING_DATA:
            suggestions = ["ANNUAL_REPORT", "ORG_OVERVIEW"]
        else:
            suggestions = ["PROPOSAL", "PROGRAM_DESCRIPTION"]
    return suggestions


def detect_placeholders(text: str) -> List[Placeholder]:
    """Find every placeholder in text, in order of position.

    Legacy tokens directly preceded by ``[`` belong to an enforced token and
    are not counted twice.
    """
    if not text:
        return []

    found: List[Placeholder] = []
    covered = []
    for match in PLACEHOLDER_RE.finditer(text):
        placeholder_type = PlaceholderType(match.group(1))
        description = match.group(2)
        found.append(Placeholder(
            id=match.group(3),
            type=placeholder_type,
            description=description,
            suggested_sources=get_suggested_sources(placeholder_type, description),
            position=PlaceholderPosition(start=match.start(), end=match.end()),
        ))
        covered.append((match.start(), match.end()))

    for match in LEGACY_PLACEHOLDER_RE.finditer(text):
        start = match.start()
        if start > 0 and text[start - 1] == "[":
            continue
        if any(s <= start < e for s, e in covered):
            continue
        description = match.group(1)
        found.append(Placeholder(
            id=make_placeholder_id("legacy", start, description),
            type=PlaceholderType.MISSING_DATA,
            description=description,
            suggested_sources=get_suggested_sources(PlaceholderType.MISSING_DATA, description),
            position=PlaceholderPosition(start=start, end=match.end()),
        ))

    found.sort(key=lambda p: p.position.start)
    return found
