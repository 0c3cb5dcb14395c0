"""Claim extraction from free text.

``ClaimExtractor`` is the deterministic regex pass over ``CLAIM_RULES``.
``LLMClaimEnhancer`` optionally layers a chat-completion pass on top for
organizations and outcomes the patterns miss; it never replaces the regex
result and falls back to it whenever the model call fails.
"""

from typing import Iterable, List, Optional

from grantguard.schemas.enforcement import ClaimType, ExtractedClaim
from grantguard.services.enforcement.claim_rules import (
    CLAIM_RULES,
    ClaimRule,
    parse_claim_type,
    risk_for,
)
from grantguard.utils.json_parser import parse_json_safely
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_CONTEXT_CHARS = 100
LLM_EXCERPT_CHARS = 6000
LLM_CLAIM_TYPES = (ClaimType.NAMED_ORG, ClaimType.OUTCOME)

CLAIM_EXTRACTION_PROMPT = """Extract factual claims from grant proposal text that a funder could check.

Only return claims of these types:
- ORGANIZATION: named partner organizations, funders or agencies
- OUTCOME: measured results or impact statements

Copy each value exactly as it appears in the text.

Return JSON:
{"claims": [{"type": "ORGANIZATION" | "OUTCOME", "value": "exact text"}]}

Return {"claims": []} if there are none."""


def _sort_key(claim: ExtractedClaim):
    # Descending start; ties broken so the ordering is fully deterministic
    return (-claim.start, -claim.end, claim.type.value)


class ClaimExtractor:
    """Deterministic regex claim extractor.

    Attributes:
        rules: Ordered claim rules to apply
        context_chars: Characters of context kept on each side of a match
    """

    def __init__(self, rules: Optional[Iterable[ClaimRule]] = None, context_chars: int = DEFAULT_CONTEXT_CHARS):
        self.rules = list(rules) if rules is not None else list(CLAIM_RULES)
        self.context_chars = context_chars

    def _context(self, text: str, start: int, end: int) -> str:
        return text[max(0, start - self.context_chars):min(len(text), end + self.context_chars)]

    def build_claim(self, text: str, claim_type: ClaimType, start: int, end: int) -> ExtractedClaim:
        return ExtractedClaim(
            type=claim_type,
            value=text[start:end],
            context=self._context(text, start, end),
            start=start,
            end=end,
            risk_level=risk_for(claim_type),
        )

    def extract_claims(self, text: str) -> List[ExtractedClaim]:
        """Extract typed claims, sorted by descending start offset.

        Overlapping matches from different rules are all kept.

        Args:
            text: Source text

        Returns:
            Claims ordered so that replacing them front-to-back keeps
            earlier offsets valid
        """
        if not text:
            return []

        claims: List[ExtractedClaim] = []
        seen = set()
        for rule in self.rules:
            for match in rule.pattern.finditer(text):
                start, end = match.span(rule.value_group)
                if start < 0 or end <= start:
                    continue
                key = (rule.claim_type, start, end)
                if key in seen:
                    continue
                seen.add(key)
                claims.append(self.build_claim(text, rule.claim_type, start, end))

        claims.sort(key=_sort_key)
        return claims


class LLMClaimEnhancer:
    """Adds LLM-found organization and outcome claims to the regex result."""

    def __init__(self, completer, extractor: Optional[ClaimExtractor] = None):
        """Initialize the enhancer.

        Args:
            completer: Object with ``async complete(system_prompt, user_prompt) -> str``
            extractor: Deterministic extractor to build on
        """
        self.completer = completer
        self.extractor = extractor or ClaimExtractor()

    async def extract_claims(self, text: str) -> List[ExtractedClaim]:
        """Regex claims plus any new LLM claims located in the text."""
        claims = self.extractor.extract_claims(text)
        if not text or self.completer is None:
            return claims

        try:
            response = await self.completer.complete(CLAIM_EXTRACTION_PROMPT, text[:LLM_EXCERPT_CHARS])
        except Exception as e:
            LOGGER.warning(
                "LLM claim extraction failed, using regex claims only",
                extra={"error": str(e), "regex_claims": len(claims)}
            )
            return claims

        extra_claims = self._parse_response(text, response, claims)
        if extra_claims:
            LOGGER.info(
                f"LLM extraction added {len(extra_claims)} claims",
                extra={"regex_claims": len(claims), "llm_claims": len(extra_claims)}
            )
        merged = claims + extra_claims
        merged.sort(key=_sort_key)
        return merged

    def _parse_response(self, text: str, response: str, existing: List[ExtractedClaim]) -> List[ExtractedClaim]:
        parsed = parse_json_safely(response or "")
        if not isinstance(parsed, dict) or not isinstance(parsed.get("claims"), list):
            if response:
                LOGGER.warning("Unparsable LLM claim response ignored")
            return []

        known_values = {c.value.lower() for c in existing}
        results: List[ExtractedClaim] = []
        for item in parsed["claims"]:
            if not isinstance(item, dict):
                continue
            claim_type = parse_claim_type(str(item.get("type", "")))
            value = str(item.get("value", "")).strip()
            if claim_type not in LLM_CLAIM_TYPES or not value:
                continue
            if value.lower() in known_values:
                continue
            start = text.find(value)
            if start < 0:
                # Values the model paraphrased cannot be located for replacement
                continue
            known_values.add(value.lower())
            results.append(self.extractor.build_claim(text, claim_type, start, start + len(value)))
        return results


def extract_claims(text: str) -> List[ExtractedClaim]:
    """Module-level shortcut for the default regex extractor."""
    return ClaimExtractor().extract_claims(text)
