"""Claim extraction rules and the claim risk table.

Each claim family is a ``ClaimRule`` row. Adding a category means adding a
row here; the extractor itself never branches on claim type.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern

from grantguard.schemas.enforcement import ClaimType, RiskLevel

CLAIM_RISK: Dict[ClaimType, RiskLevel] = {
    ClaimType.PERCENTAGE: RiskLevel.HIGH,
    ClaimType.CURRENCY: RiskLevel.HIGH,
    ClaimType.OUTCOME: RiskLevel.HIGH,
    ClaimType.NAMED_ORG: RiskLevel.HIGH,
    ClaimType.NAMED_PERSON: RiskLevel.HIGH,
    ClaimType.STAFF_NAME: RiskLevel.HIGH,
    ClaimType.NUMBER: RiskLevel.MEDIUM,
    ClaimType.DATE: RiskLevel.MEDIUM,
    ClaimType.LOCATION: RiskLevel.LOW,
}

# LLM output uses the broader label for organizations
CLAIM_TYPE_ALIASES: Dict[str, ClaimType] = {
    "ORGANIZATION": ClaimType.NAMED_ORG,
    "ORG": ClaimType.NAMED_ORG,
    "PERSON": ClaimType.NAMED_PERSON,
}


def risk_for(claim_type: ClaimType) -> RiskLevel:
    return CLAIM_RISK[ClaimType(claim_type)]


def is_blocking_risk(claim_type: ClaimType) -> bool:
    """High-risk claims block export while unverified."""
    return risk_for(claim_type) == RiskLevel.HIGH


def parse_claim_type(raw: str) -> Optional[ClaimType]:
    if not raw:
        return None
    key = raw.strip().upper()
    if key in CLAIM_TYPE_ALIASES:
        return CLAIM_TYPE_ALIASES[key]
    try:
        return ClaimType(key)
    except ValueError:
        return None


@dataclass(frozen=True)
class ClaimRule:
    """One regex family.

    Attributes:
        name: Stable rule name used in logs
        claim_type: Type assigned to matches
        pattern: Compiled pattern
        value_group: Group holding the claim value; 0 uses the whole match
    """
    name: str
    claim_type: ClaimType
    pattern: Pattern
    value_group: int = 0


_UNIT_WORDS = (
    "people|participants|youth|students|families|seniors|clients|members|individuals|"
    "organizations|partners|partner organizations|communities|staff|volunteers|employees|"
    "beneficiaries|children|households|veterans|patients|residents|schools|sites|programs"
)
_MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|November|December|"
    "Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec"
)
_NAME = r"[A-Z][a-z]+(?:\s+[A-Z]\.)?(?:\s+[A-Z][a-z]+(?:-[A-Z][a-z]+)?)+"
_STAFF_TITLES = (
    "Executive Director|Program Director|Program Manager|Project Director|Project Manager|"
    "Development Director|Director|Coordinator|CEO|CFO|COO|President|Founder|Chair"
)

CLAIM_RULES: List[ClaimRule] = [
    ClaimRule(
        name="number_with_unit",
        claim_type=ClaimType.NUMBER,
        pattern=re.compile(
            rf"\b(?:\d{{1,3}}(?:,\d{{3}})+|\d+)(?:\.\d+)?\+?\s*(?:[a-z]+\s+)?(?:{_UNIT_WORDS})\b",
            re.IGNORECASE,
        ),
    ),
    ClaimRule(
        name="percentage",
        claim_type=ClaimType.PERCENTAGE,
        pattern=re.compile(r"\b\d+(?:\.\d+)?\s*(?:%|percent\b)", re.IGNORECASE),
    ),
    ClaimRule(
        name="currency",
        claim_type=ClaimType.CURRENCY,
        pattern=re.compile(
            r"\$\s*(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?(?:\s*(?:million|billion|thousand)\b|[MBK]\b)?"
            r"|\b(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?\s*dollars?\b",
            re.IGNORECASE,
        ),
    ),
    ClaimRule(
        name="date",
        claim_type=ClaimType.DATE,
        pattern=re.compile(
            rf"\b(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}\b"
            rf"|\b(?:{_MONTHS})\s+\d{{4}}\b"
            r"|\b\d{1,2}/\d{1,2}/\d{2,4}\b"
            r"|\b(?:19|20)\d{2}\b"
        ),
    ),
    ClaimRule(
        name="partner_organization",
        claim_type=ClaimType.NAMED_ORG,
        pattern=re.compile(
            r"\b(?:[Pp]artnered?\s+with|[Cc]ollaborat(?:ion|ing|ed)\s+with|[Ww]orking\s+with|"
            r"[Ff]unded\s+by|[Ss]upported\s+by|[Ii]n\s+partnership\s+with)\s+"
            r"(?:the\s+)?([A-Z][A-Za-z&'-]*(?:\s+(?:of\s+|for\s+|and\s+|&\s+)?[A-Z][A-Za-z&'-]*)*)"
        ),
        value_group=1,
    ),
    ClaimRule(
        name="titled_person",
        claim_type=ClaimType.NAMED_PERSON,
        pattern=re.compile(rf"\b(?:Dr|Mr|Mrs|Ms|Prof)\.?\s+{_NAME}"),
    ),
    ClaimRule(
        name="staff_name",
        claim_type=ClaimType.STAFF_NAME,
        pattern=re.compile(rf"\b(?:{_STAFF_TITLES}),?\s+({_NAME})"),
        value_group=1,
    ),
    ClaimRule(
        name="outcome_percentage",
        claim_type=ClaimType.OUTCOME,
        pattern=re.compile(
            r"\b(?:increased|decreased|reduced|improved|raised|grew|boosted|lowered|cut)\b"
            r"[^.\n]{0,60}?\bby\s+\d+(?:\.\d+)?\s*(?:%|percent\b)",
            re.IGNORECASE,
        ),
    ),
    ClaimRule(
        name="location",
        claim_type=ClaimType.LOCATION,
        pattern=re.compile(
            r"\b(?:in|across|throughout|serving)\s+"
            r"((?:[A-Z][a-z]+\s+)*(?:County|City|Parish|District|Region|Valley|State)"
            r"|[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?,\s+[A-Z]{2}\b)"
        ),
        value_group=1,
    ),
]
