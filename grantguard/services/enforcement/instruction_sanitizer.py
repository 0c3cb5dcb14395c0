"""Neutralizes custom instructions that try to switch enforcement off.

Users may attach free-text instructions to a generation request. Anything
asking the model to skip placeholders, skip verification, sound more
confident than the sources allow, ignore the knowledge base, or invent
facts is replaced by ``[POLICY_BLOCKED]`` before the text reaches a prompt.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Tuple

from grantguard.schemas.enforcement import SanitizationResult
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)

POLICY_BLOCKED = "[POLICY_BLOCKED]"
MAX_PASSES = 10

_ZERO_WIDTH_RE = re.compile(r"[\u200b\u200c\u200d\u2060\ufeff\u00ad]")
_NON_LETTERS_RE = re.compile(r"[^a-z]+")

# Apostrophe, straight or curly, optional
_DONT = r"(?:don['’]?t|do\s+not)"
_DET = r"(?:the\s+|all\s+|any\s+|your\s+)?"


class BypassCategory(str, Enum):
    """Kinds of enforcement bypass attempts."""

    PLACEHOLDER_BYPASS = "PLACEHOLDER_BYPASS"
    VERIFICATION_BYPASS = "VERIFICATION_BYPASS"
    CONFIDENCE_MANIPULATION = "CONFIDENCE_MANIPULATION"
    KNOWLEDGE_BASE_BYPASS = "KNOWLEDGE_BASE_BYPASS"
    FABRICATION = "FABRICATION"
    ESTIMATION = "ESTIMATION"
    CREATIVE_LICENSE = "CREATIVE_LICENSE"
    ROLE_PLAY = "ROLE_PLAY"


@dataclass(frozen=True)
class BypassRule:
    category: BypassCategory
    pattern: Pattern


def _rule(category: BypassCategory, pattern: str) -> BypassRule:
    return BypassRule(category, re.compile(pattern, re.IGNORECASE))


BYPASS_RULES: List[BypassRule] = [
    # Placeholder bypass
    _rule(BypassCategory.PLACEHOLDER_BYPASS, rf"\bignore\s*{_DET}placeholders?\b"),
    _rule(BypassCategory.PLACEHOLDER_BYPASS, rf"\b{_DONT}\s*(?:use|add|include|insert)\s*{_DET}placeholders?\b"),
    _rule(BypassCategory.PLACEHOLDER_BYPASS, r"\bno\s*(?:more\s+)?placeholders?\b"),
    _rule(BypassCategory.PLACEHOLDER_BYPASS, rf"\b(?:remove|avoid|skip|drop)\s+{_DET}placeholders?\b"),
    _rule(BypassCategory.PLACEHOLDER_BYPASS, r"\bwithout\s+(?:any\s+)?placeholders?\b"),

    # Verification bypass
    _rule(BypassCategory.VERIFICATION_BYPASS, rf"\bskip\s*{_DET}(?:verification|fact[-\s]?check(?:ing|s)?)\b"),
    _rule(BypassCategory.VERIFICATION_BYPASS, rf"\bignore\s*{_DET}(?:enforcement|verification|rules|guardrails)\b"),
    _rule(BypassCategory.VERIFICATION_BYPASS,
          rf"\b(?:disable|bypass|turn\s+off|override)\s+{_DET}(?:enforcement|verification|fact[-\s]?checking|guardrails)\b"),
    _rule(BypassCategory.VERIFICATION_BYPASS, r"\bignore\s+(?:all\s+)?(?:previous|prior|above|earlier)\s+instructions\b"),

    # Confidence manipulation
    _rule(BypassCategory.CONFIDENCE_MANIPULATION, r"\bbe\s*(?:more\s+|very\s+|extremely\s+|totally\s+)?confident\b"),
    _rule(BypassCategory.CONFIDENCE_MANIPULATION, rf"\b{_DONT}\s*hedge\b"),
    _rule(BypassCategory.CONFIDENCE_MANIPULATION, r"\bno\s+(?:hedging|caveats|qualifiers|disclaimers)\b"),
    _rule(BypassCategory.CONFIDENCE_MANIPULATION,
          r"\b(?:sound|write|be)\s+(?:more\s+)?(?:certain|authoritative|definitive)\b"),
    _rule(BypassCategory.CONFIDENCE_MANIPULATION, r"\bstate\s+(?:everything|it|them)\s+as\s+facts?\b"),

    # Knowledge-base bypass
    _rule(BypassCategory.KNOWLEDGE_BASE_BYPASS, rf"\bignore\s*{_DET}(?:knowledge\s*base|kb|sources|source\s+documents)\b"),
    _rule(BypassCategory.KNOWLEDGE_BASE_BYPASS,
          rf"\b{_DONT}\s+(?:rely\s+on|use|limit\s+yourself\s+to|stick\s+to)\s+{_DET}(?:knowledge\s*base|sources|source\s+documents|documents)\b"),
    _rule(BypassCategory.KNOWLEDGE_BASE_BYPASS, r"\buse\s+(?:your\s+)?(?:general|own|outside|external|prior)\s+knowledge\b"),

    # Fabrication
    _rule(BypassCategory.FABRICATION,
          r"\bmake\s*up\s+(?:some\s+|the\s+|any\s+)?(?:numbers|data|statistics|stats|figures|facts|names|details|partners|outcomes|results|quotes)\b"),
    _rule(BypassCategory.FABRICATION, r"\bmake\s+(?:things|stuff|it|them|something)\s+up\b"),
    _rule(BypassCategory.FABRICATION, r"\binvent(?:s|ed|ing)?\b"),
    _rule(BypassCategory.FABRICATION, r"\bfabricat(?:e|es|ed|ing|ion)\b"),
    _rule(BypassCategory.FABRICATION, r"\bmade[-\s]up\s+(?:numbers|data|statistics|stats|figures|facts|names)\b"),

    # Estimation
    _rule(BypassCategory.ESTIMATION,
          r"\b(?:provide|give|use|include|add|make)\s+(?:some\s+)?(?:reasonable|rough|plausible|approximate|ballpark|educated)\s+(?:estimates?|numbers|figures|guesses)\b"),
    _rule(BypassCategory.ESTIMATION, r"\b(?:estimate|guess)\s+(?:the\s+|any\s+)?(?:numbers|figures|statistics|stats|outcomes|data|amounts)\b"),
    _rule(BypassCategory.ESTIMATION, r"\bfill\s+in\s+(?:the\s+)?(?:gaps|blanks|missing\s+(?:data|numbers|details|information))\b"),

    # Creative license
    _rule(BypassCategory.CREATIVE_LICENSE, r"\b(?:take|use)\s+(?:some\s+)?creative\s+(?:license|licence|liberties|liberty|freedom)\b"),
    _rule(BypassCategory.CREATIVE_LICENSE, r"\bembellish(?:ed|es|ing)?\b"),
    _rule(BypassCategory.CREATIVE_LICENSE, r"\bexaggerat(?:e|ed|es|ing)\b"),
    _rule(BypassCategory.CREATIVE_LICENSE, r"\bbe\s+creative\s+with\s+(?:the\s+)?(?:facts|numbers|data|details|figures)\b"),

    # Role-play framing
    _rule(BypassCategory.ROLE_PLAY, r"\bpretend\s+(?:that\s+)?(?:you\s*(?:are|['’]re)|to\s+be)\b"),
    _rule(BypassCategory.ROLE_PLAY, r"\b(?:act|behave|respond)\s+as\s+(?:if|though)\b"),
    _rule(BypassCategory.ROLE_PLAY, r"\byou\s+are\s+now\b"),
    _rule(BypassCategory.ROLE_PLAY, r"\brole[-\s]?play(?:ing)?\b"),
]

# Probes run on the letters-only form, catching spaced or punctuated phrasing
# such as "i.g.n.o.r.e placeholders" or "skip-veri fication".
COLLAPSED_PROBES: List[Tuple[BypassCategory, Pattern]] = [
    (BypassCategory.PLACEHOLDER_BYPASS, re.compile(r"ignore(?:the|all|any)?placeholders?")),
    (BypassCategory.PLACEHOLDER_BYPASS, re.compile(r"(?:dont|donot)(?:use|add)(?:any)?placeholders?")),
    (BypassCategory.VERIFICATION_BYPASS, re.compile(r"skip(?:the|all|any)?verification")),
    (BypassCategory.VERIFICATION_BYPASS, re.compile(r"ignore(?:the|all|any)?enforcement")),
    (BypassCategory.CONFIDENCE_MANIPULATION, re.compile(r"(?:dont|donot)hedge")),
    (BypassCategory.KNOWLEDGE_BASE_BYPASS, re.compile(r"ignore(?:the|your)?knowledgebase")),
    (BypassCategory.FABRICATION,
     re.compile(r"(?:makeup|invent|fabricate)(?:some|the|any)?(?:numbers|data|statistics|stats|figures|facts|partners|outcomes)")),
    (BypassCategory.ROLE_PLAY, re.compile(r"pretendyou(?:are|re)")),
]


def _apply_rules(text: str, categories: List[BypassCategory]) -> str:
    """Replace rule matches until no rule matches any more."""
    for _ in range(MAX_PASSES):
        changed = False
        for rule in BYPASS_RULES:
            text, count = rule.pattern.subn(POLICY_BLOCKED, text)
            if count:
                changed = True
                if rule.category not in categories:
                    categories.append(rule.category)
        if not changed:
            break
    return text


def _probe_hidden_bypass(text: str) -> Optional[BypassCategory]:
    """Look for a bypass phrase split up by markers or non-letters."""
    unmarked = text.replace(POLICY_BLOCKED, "")
    for rule in BYPASS_RULES:
        if rule.pattern.search(unmarked):
            return rule.category

    collapsed = _NON_LETTERS_RE.sub("", unmarked.lower())
    for category, pattern in COLLAPSED_PROBES:
        if pattern.search(collapsed):
            return category
    return None


def sanitize_custom_instructions(text: Optional[str]) -> SanitizationResult:
    """Neutralize enforcement-bypass attempts in user instructions.

    Never raises. Sanitizing an already sanitized string returns it
    unchanged.

    Args:
        text: Raw custom instructions, possibly None

    Returns:
        SanitizationResult with the text safe for prompting, whether any
        bypass attempt was found, and the categories found
    """
    if not text:
        return SanitizationResult(sanitized="", policy_override=False, blocked_patterns=[])
    if not isinstance(text, str):
        text = str(text)

    categories: List[BypassCategory] = []
    sanitized = _apply_rules(_ZERO_WIDTH_RE.sub("", text), categories)

    hidden = _probe_hidden_bypass(sanitized)
    if hidden is not None:
        sanitized = POLICY_BLOCKED
        if hidden not in categories:
            categories.append(hidden)

    if categories:
        LOGGER.warning(
            "Blocked enforcement bypass attempt in custom instructions",
            extra={
                "categories": [c.value for c in categories],
                "instruction_length": len(text),
                "whole_text_blocked": hidden is not None,
            }
        )

    return SanitizationResult(
        sanitized=sanitized,
        policy_override=bool(categories),
        blocked_patterns=[c.value for c in categories],
    )
