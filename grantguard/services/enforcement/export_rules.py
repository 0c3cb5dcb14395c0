"""Export gate rules.

Every rule reads the gathered ``EnforcementData`` and the active thresholds.
BLOCK rules cannot be overridden; WARN rules can be exported past, with an
attestation when any of them is HIGH severity.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from grantguard.schemas.enforcement import (
    ClaimStatus,
    EnforcementData,
    LimitViolation,
    PlaceholderType,
    RiskLevel,
    RuleAction,
    WarningSeverity,
)
from grantguard.services.enforcement.thresholds import EnforcementThresholds

RuleFn = Callable[[EnforcementData, EnforcementThresholds], object]

DEFAULT_RESOLUTION = "Review and fix the identified issues"
DEFAULT_WARNING_SEVERITY = WarningSeverity.MEDIUM


@dataclass(frozen=True)
class ExportRule:
    """One export check.

    Attributes:
        id: Stable rule id recorded in audit logs
        ac: Acceptance criterion the rule enforces
        action: BLOCK or WARN
        check: Returns True when the rule fires
        message: Human-readable reason
        resolution: How to clear a BLOCK
        severity: WARN severity
        affected_items: Names of the offending items
    """
    id: str
    ac: str
    action: RuleAction
    check: RuleFn
    message: RuleFn
    resolution: Optional[str] = None
    severity: Optional[WarningSeverity] = None
    affected_items: Optional[RuleFn] = None


def _unverified_claims(data: EnforcementData, risk: RiskLevel) -> List[str]:
    if data.claims is None:
        return []
    return [
        c.value for c in data.claims.claims
        if c.risk_level == risk and c.status == ClaimStatus.UNVERIFIED
    ]


def _blocking_violations(data: EnforcementData, t: EnforcementThresholds) -> List[LimitViolation]:
    if data.compliance is None:
        return []
    return [v for v in data.compliance.limit_violations if v.overage_percent > t.word_limit_block_percent]


def _warning_violations(data: EnforcementData, t: EnforcementThresholds) -> List[LimitViolation]:
    if data.compliance is None:
        return []
    return [
        v for v in data.compliance.limit_violations
        if t.word_limit_warn_percent < v.overage_percent <= t.word_limit_block_percent
    ]


def _describe_violations(violations: List[LimitViolation]) -> str:
    return ", ".join(f"{v.section_name} ({v.overage_percent}% over)" for v in violations)


def _placeholder_count(data: EnforcementData, *types: PlaceholderType) -> int:
    if data.placeholders is None:
        return 0
    return sum(data.placeholders.by_type.get(t.value, 0) for t in types)


def _unresolved_placeholders(data: EnforcementData, *types: PlaceholderType) -> List[str]:
    if data.placeholders is None:
        return []
    return [p.description for p in data.placeholders.placeholders if not p.resolved and p.type in types]


def _blocking_ambiguities(data: EnforcementData) -> List[str]:
    if data.ambiguities is None:
        return []
    return [a.description for a in data.ambiguities.ambiguities if a.requires_user_input and not a.resolved]


def _sections_below(data: EnforcementData, score: int) -> List[str]:
    if data.coverage is None:
        return []
    return [s.section_name for s in data.coverage.section_scores if s.coverage_score < score]


def _coverage_score(data: EnforcementData) -> int:
    return data.coverage.overall_score if data.coverage is not None else 0


_BLOCKING_PLACEHOLDERS = (PlaceholderType.MISSING_DATA, PlaceholderType.USER_INPUT_REQUIRED)


EXPORT_RULES: List[ExportRule] = [
    ExportRule(
        id="HIGH_RISK_UNVERIFIED",
        ac="AC-1.3",
        action=RuleAction.BLOCK,
        check=lambda d, t: d.claims is not None and d.claims.high_risk_unverified > 0,
        message=lambda d, t: (
            f"{d.claims.high_risk_unverified if d.claims else 0} high-risk claims are unverified "
            "(statistics, dollar amounts, outcomes, or partner names)"
        ),
        resolution="Verify or remove unverified high-risk claims by adding supporting documents or editing the content",
        affected_items=lambda d, t: _unverified_claims(d, RiskLevel.HIGH),
    ),
    ExportRule(
        id="COVERAGE_CRITICAL",
        ac="AC-1.5",
        action=RuleAction.BLOCK,
        check=lambda d, t: d.coverage is not None and d.coverage.overall_score < t.coverage_block,
        message=lambda d, t: (
            f"Source coverage is critically low ({_coverage_score(d)}%). Minimum required: {t.coverage_block}%"
        ),
        resolution="Add more source documents to your knowledge base or review AI-generated content for accuracy",
        affected_items=lambda d, t: _sections_below(d, t.coverage_block),
    ),
    ExportRule(
        id="REQUIRED_SECTION_MISSING",
        ac="AC-2.3",
        action=RuleAction.BLOCK,
        check=lambda d, t: d.compliance is not None and len(d.compliance.missing_sections) > 0,
        message=lambda d, t: f"Required sections are missing: {', '.join(d.compliance.missing_sections)}",
        resolution="Add the missing required sections to your proposal",
        affected_items=lambda d, t: list(d.compliance.missing_sections),
    ),
    ExportRule(
        id="REQUIRED_SECTION_EMPTY",
        ac="AC-2.3",
        action=RuleAction.BLOCK,
        check=lambda d, t: d.compliance is not None and len(d.compliance.empty_sections) > 0,
        message=lambda d, t: f"Required sections are empty or too short: {', '.join(d.compliance.empty_sections)}",
        resolution="Add content to the empty required sections",
        affected_items=lambda d, t: list(d.compliance.empty_sections),
    ),
    ExportRule(
        id="WORD_LIMIT_CRITICAL",
        ac="AC-2.3",
        action=RuleAction.BLOCK,
        check=lambda d, t: len(_blocking_violations(d, t)) > 0,
        message=lambda d, t: (
            f"Word/character limits exceeded by more than {t.word_limit_block_percent}%: "
            f"{_describe_violations(_blocking_violations(d, t))}"
        ),
        resolution="Reduce the content length in the affected sections to meet the limits",
        affected_items=lambda d, t: [v.section_name for v in _blocking_violations(d, t)],
    ),
    ExportRule(
        id="UNRESOLVED_PLACEHOLDER",
        ac="AC-1.2",
        action=RuleAction.BLOCK,
        check=lambda d, t: _placeholder_count(d, *_BLOCKING_PLACEHOLDERS) > 0,
        message=lambda d, t: (
            f"{_placeholder_count(d, *_BLOCKING_PLACEHOLDERS)} placeholder(s) require resolution before export"
        ),
        resolution="Complete all placeholder sections by providing the required information",
        affected_items=lambda d, t: _unresolved_placeholders(d, *_BLOCKING_PLACEHOLDERS),
    ),
    ExportRule(
        id="UNRESOLVED_AMBIGUITY",
        ac="AC-2.4",
        action=RuleAction.BLOCK,
        check=lambda d, t: len(_blocking_ambiguities(d)) > 0,
        message=lambda d, t: "RFP ambiguities require resolution before export",
        resolution="Review and resolve the flagged ambiguities in the RFP requirements",
        affected_items=lambda d, t: _blocking_ambiguities(d),
    ),
    ExportRule(
        id="ENFORCEMENT_FAILURE_FLAG",
        ac="AC-5.3",
        action=RuleAction.BLOCK,
        check=lambda d, t: d.enforcement_failure is True,
        message=lambda d, t: (
            "Enforcement validation failed during generation. Some content may not have been verified."
        ),
        resolution="Regenerate the affected sections or manually verify all claims and statistics",
        affected_items=lambda d, t: ["Proposal enforcement validation"],
    ),
    ExportRule(
        id="NULL_COVERAGE_DATA",
        ac="AC-5.3",
        action=RuleAction.BLOCK,
        check=lambda d, t: d.coverage is None and d.has_generated_content,
        message=lambda d, t: "Source coverage could not be computed. Export blocked for safety.",
        resolution="Refresh the proposal page to trigger coverage computation, or regenerate sections",
        affected_items=lambda d, t: ["Coverage validation"],
    ),
    ExportRule(
        id="GENERIC_KNOWLEDGE_CONTENT",
        ac="AC-4.4",
        action=RuleAction.BLOCK,
        check=lambda d, t: len(d.sections_with_generic_knowledge) > 0,
        message=lambda d, t: (
            f"{len(d.sections_with_generic_knowledge)} section(s) were generated without supporting sources"
        ),
        resolution="Upload relevant documents to your knowledge base and regenerate these sections",
        affected_items=lambda d, t: list(d.sections_with_generic_knowledge),
    ),
    ExportRule(
        id="COVERAGE_LOW",
        ac="AC-1.5",
        action=RuleAction.WARN,
        severity=WarningSeverity.HIGH,
        check=lambda d, t: d.coverage is not None and t.coverage_block <= d.coverage.overall_score < t.coverage_warn,
        message=lambda d, t: f"Source coverage is low ({_coverage_score(d)}%). Recommended: {t.coverage_warn}%+",
        affected_items=lambda d, t: _sections_below(d, t.coverage_warn),
    ),
    ExportRule(
        id="UNVERIFIED_MEDIUM_CLAIMS",
        ac="AC-1.3",
        action=RuleAction.WARN,
        severity=WarningSeverity.MEDIUM,
        check=lambda d, t: len(_unverified_claims(d, RiskLevel.MEDIUM)) > 0,
        message=lambda d, t: (
            f"{len(_unverified_claims(d, RiskLevel.MEDIUM))} medium-risk claim(s) could not be verified "
            "against your knowledge base"
        ),
        affected_items=lambda d, t: _unverified_claims(d, RiskLevel.MEDIUM),
    ),
    ExportRule(
        id="WORD_LIMIT_WARN",
        ac="AC-2.3",
        action=RuleAction.WARN,
        severity=WarningSeverity.LOW,
        check=lambda d, t: len(_warning_violations(d, t)) > 0,
        message=lambda d, t: (
            f"Word/character limits slightly exceeded: {_describe_violations(_warning_violations(d, t))}"
        ),
        affected_items=lambda d, t: [v.section_name for v in _warning_violations(d, t)],
    ),
    ExportRule(
        id="VERIFICATION_PLACEHOLDERS",
        ac="AC-1.2",
        action=RuleAction.WARN,
        severity=WarningSeverity.LOW,
        check=lambda d, t: (
            _placeholder_count(d, PlaceholderType.VERIFICATION_NEEDED) > t.max_verification_placeholders
        ),
        message=lambda d, t: (
            f"{_placeholder_count(d, PlaceholderType.VERIFICATION_NEEDED)} sections are marked for verification"
        ),
        affected_items=lambda d, t: _unresolved_placeholders(d, PlaceholderType.VERIFICATION_NEEDED),
    ),
]
