"""Compliance of proposal sections against RFP requirements.

Checks that required sections exist and have content, and that word and
character limits hold. Overages above ``word_limit_block_percent`` block
export; smaller overages only warn.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.core.exceptions import ProposalNotFoundError
from grantguard.repositories.proposal_repository import ProposalRepository, SectionRepository
from grantguard.schemas.enforcement import (
    ComplianceOverallStatus,
    ComplianceStatus,
    LimitType,
    LimitViolation,
    SectionStatus,
)
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from grantguard.utils.logging import get_logger
from grantguard.utils.text import count_characters, count_words, strip_html

LOGGER = get_logger(__name__)


def section_name_variants(name: str) -> List[str]:
    """Lowercase forms of a section name with spaces and underscores swapped."""
    lower = name.lower()
    return [lower, "_".join(lower.split()), lower.replace("_", " ")]


def _overage_percent(actual: int, limit: int) -> int:
    return round(100 * (actual - limit) / limit)


def build_section_status(section, thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS) -> SectionStatus:
    plain = strip_html(section.content or "")
    return SectionStatus(
        section_id=section.id,
        section_name=section.section_name,
        is_required=bool(section.is_required),
        is_complete=len(plain) >= thresholds.min_section_content_length,
        word_count=count_words(plain),
        char_count=count_characters(plain),
        word_limit=section.word_limit or None,
        char_limit=section.char_limit or None,
    )


def limit_violations_for(status: SectionStatus) -> List[LimitViolation]:
    violations = []
    if status.word_limit and status.word_count > status.word_limit:
        violations.append(LimitViolation(
            section_id=status.section_id,
            section_name=status.section_name,
            limit_type=LimitType.WORD,
            limit=status.word_limit,
            actual=status.word_count,
            overage_percent=_overage_percent(status.word_count, status.word_limit),
        ))
    if status.char_limit and status.char_count > status.char_limit:
        violations.append(LimitViolation(
            section_id=status.section_id,
            section_name=status.section_name,
            limit_type=LimitType.CHAR,
            limit=status.char_limit,
            actual=status.char_count,
            overage_percent=_overage_percent(status.char_count, status.char_limit),
        ))
    return violations


def find_missing_sections(
    parsed_requirements: Optional[Dict[str, Any]],
    existing_names: Sequence[str],
) -> List[str]:
    """Required RFP sections with no matching proposal section."""
    if not isinstance(parsed_requirements, dict):
        return []
    required = parsed_requirements.get("sections") or []
    existing = {name.lower() for name in existing_names}

    missing: List[str] = []
    for item in required:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name", "")).strip()
        is_required = item.get("is_required", item.get("isRequired", False))
        if not name or not is_required:
            continue
        if any(v in existing for v in section_name_variants(name)):
            continue
        if name not in missing:
            missing.append(name)
    return missing


def evaluate_compliance(
    proposal_id: UUID,
    sections: Sequence[Any],
    parsed_requirements: Optional[Dict[str, Any]] = None,
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
    checked_at: Optional[datetime] = None,
) -> ComplianceStatus:
    """Compliance of the given sections.

    Args:
        proposal_id: Proposal being checked
        sections: Section rows in display order
        parsed_requirements: Parsed RFP requirements with a ``sections`` list
        thresholds: Content length and overage thresholds
        checked_at: Timestamp to stamp on the result

    Returns:
        ComplianceStatus with a 0-100 score, half for completed required
        sections and half for sections within their limits
    """
    statuses = [build_section_status(s, thresholds) for s in sections]
    empty_sections = [s.section_name for s in statuses if s.is_required and not s.is_complete]
    violations = [v for s in statuses for v in limit_violations_for(s)]
    missing_sections = find_missing_sections(parsed_requirements, [s.section_name for s in statuses])

    has_blocking = any(v.overage_percent > thresholds.word_limit_block_percent for v in violations)
    if has_blocking or missing_sections or empty_sections:
        overall = ComplianceOverallStatus.VIOLATIONS
    elif violations:
        overall = ComplianceOverallStatus.INCOMPLETE
    else:
        overall = ComplianceOverallStatus.COMPLETE

    required = [s for s in statuses if s.is_required]
    over_limit = {v.section_id for v in violations}
    within_limits = sum(1 for s in statuses if s.section_id not in over_limit)

    completion_score = 50 * sum(1 for s in required if s.is_complete) / len(required) if required else 50
    limit_score = 50 * within_limits / len(statuses) if statuses else 50

    return ComplianceStatus(
        proposal_id=proposal_id,
        overall_status=overall,
        required_sections=statuses,
        missing_sections=missing_sections,
        empty_sections=empty_sections,
        limit_violations=violations,
        compliance_score=round(completion_score + limit_score),
        checked_at=checked_at,
    )


def get_blocking_violations(
    compliance: ComplianceStatus,
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> List[LimitViolation]:
    return [v for v in compliance.limit_violations if v.overage_percent > thresholds.word_limit_block_percent]


def get_warning_violations(
    compliance: ComplianceStatus,
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> List[LimitViolation]:
    return [
        v for v in compliance.limit_violations
        if thresholds.word_limit_warn_percent < v.overage_percent <= thresholds.word_limit_block_percent
    ]


class ComplianceChecker:
    """Loads a proposal and evaluates its compliance."""

    def __init__(self, session: AsyncSession, thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS):
        self.session = session
        self.thresholds = thresholds
        self.proposal_repo = ProposalRepository(session)
        self.section_repo = SectionRepository(session)

    async def check_compliance(self, proposal_id: UUID) -> ComplianceStatus:
        """Check a stored proposal.

        Raises:
            ProposalNotFoundError: If the proposal does not exist
        """
        proposal = await self.proposal_repo.get_by_id(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(f"Proposal not found: {proposal_id}")

        sections = await self.section_repo.get_by_proposal(proposal_id)
        status = evaluate_compliance(
            proposal_id,
            sections,
            proposal.parsed_requirements,
            self.thresholds,
            datetime.now(timezone.utc),
        )

        LOGGER.info(
            "Checked proposal compliance",
            extra={
                "proposal_id": str(proposal_id),
                "overall_status": status.overall_status.value,
                "compliance_score": status.compliance_score,
                "limit_violations": len(status.limit_violations),
            }
        )
        return status

    def get_blocking_violations(self, compliance: ComplianceStatus) -> List[LimitViolation]:
        return get_blocking_violations(compliance, self.thresholds)

    def get_warning_violations(self, compliance: ComplianceStatus) -> List[LimitViolation]:
        return get_warning_violations(compliance, self.thresholds)
