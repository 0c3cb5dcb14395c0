"""Decides whether a claim is backed by retrieved source chunks.

A bare value match is not enough for numeric claims: "500 participants" must
not be considered supported by an unrelated "$500,000 budget". The matcher
therefore requires that words surrounding the claim also appear near the
value inside the chunk. Names are never fuzzy-verified.
"""

import re
from typing import Iterable, List, Optional, Sequence

from grantguard.schemas.enforcement import ClaimType, ExtractedClaim, RetrievedChunk
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from grantguard.utils.text import content_tokens, normalize_whitespace

_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")
_COMPACT_RE = re.compile(r"[,\s]+")

NAME_TYPES = frozenset({ClaimType.NAMED_PERSON, ClaimType.STAFF_NAME})


def _compact(text: str) -> str:
    return _COMPACT_RE.sub("", text.lower())


def _bare_number(value: str) -> Optional[str]:
    match = _NUMBER_RE.search(value)
    if not match:
        return None
    return match.group(0).replace(",", "")


def _number_positions(chunk_text: str, number: str) -> List[int]:
    """Offsets in the chunk where ``number`` appears as a whole number."""
    positions = []
    for match in _NUMBER_RE.finditer(chunk_text):
        if match.group(0).replace(",", "") == number:
            positions.append(match.start())
    return positions


def claim_context_tokens(claim: ExtractedClaim, source_text: Optional[str] = None) -> List[str]:
    """Non-stopword context words for a claim, excluding its numbers.

    Args:
        claim: The claim being checked
        source_text: Full text the claim came from; its ±100 character
            window is used when given, otherwise the claim's stored context

    Returns:
        Unique context tokens in order of appearance
    """
    if source_text is not None:
        window = source_text[max(0, claim.start - 100):claim.end + 100]
    else:
        window = claim.context or claim.value
    tokens: List[str] = []
    for token in content_tokens(window):
        if token not in tokens:
            tokens.append(token)
    return tokens


class EvidenceMatcher:
    """Type-aware claim support check against a chunk set."""

    def __init__(self, thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS):
        self.thresholds = thresholds

    def is_supported(
        self,
        claim: ExtractedClaim,
        chunks: Sequence[RetrievedChunk],
        source_text: Optional[str] = None,
    ) -> bool:
        """Return True as soon as any chunk satisfies the claim's rule."""
        if not chunks:
            return False

        if claim.type in NAME_TYPES:
            name = normalize_whitespace(claim.value)
            return any(name in normalize_whitespace(c.content) for c in chunks)

        if claim.type == ClaimType.NAMED_ORG:
            org = normalize_whitespace(claim.value).lower()
            return any(org in normalize_whitespace(c.content).lower() for c in chunks)

        context = claim_context_tokens(claim, source_text)
        return any(self._chunk_supports_value(claim, chunk.content, context) for chunk in chunks)

    def _chunk_supports_value(self, claim: ExtractedClaim, chunk_text: str, context: List[str]) -> bool:
        compact_value = _compact(claim.value)
        compact_chunk = _compact(chunk_text)
        number = _bare_number(claim.value)

        full_match = bool(compact_value) and compact_value in compact_chunk
        if not full_match and not (number and _number_positions(chunk_text, number)):
            return False

        if not context:
            return full_match

        positions = _number_positions(chunk_text, number) if number else []
        if not positions:
            idx = chunk_text.lower().find(claim.value.lower())
            positions = [idx] if idx >= 0 else [0]

        window_size = self.thresholds.context_window
        required = self.thresholds.context_overlap_ratio
        for pos in positions:
            window = chunk_text[max(0, pos - window_size):pos + window_size]
            window_tokens = set(content_tokens(window))
            overlap = sum(1 for token in context if token in window_tokens)
            if overlap / len(context) >= required:
                return True
        return False


def is_claim_supported(
    claim: ExtractedClaim,
    chunks: Iterable[RetrievedChunk],
    source_text: Optional[str] = None,
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> bool:
    """Check one claim against a chunk set with the default matcher."""
    return EvidenceMatcher(thresholds).is_supported(claim, list(chunks), source_text)
