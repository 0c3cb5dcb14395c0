"""Tests for the compliance checker."""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

from grantguard.core.exceptions import ProposalNotFoundError
from grantguard.schemas.enforcement import ComplianceOverallStatus, LimitType
from grantguard.services.enforcement.compliance_checker import (
    ComplianceChecker,
    evaluate_compliance,
    find_missing_sections,
    get_blocking_violations,
    get_warning_violations,
)

LONG_CONTENT = "Our organization has delivered literacy programs in the county for a decade."


def _words(n: int) -> str:
    return " ".join(["word"] * n)


class TestEvaluateCompliance:

    def test_complete_proposal(self, make_section):
        sections = [make_section(content=LONG_CONTENT), make_section(section_name="Budget", content=LONG_CONTENT)]

        status = evaluate_compliance(uuid4(), sections)

        assert status.overall_status == ComplianceOverallStatus.COMPLETE
        assert status.compliance_score == 100

    def test_empty_required_section_is_violation(self, make_section):
        sections = [
            make_section(section_name="Project Narrative", content=""),
            make_section(section_name="Budget", content=LONG_CONTENT),
        ]

        status = evaluate_compliance(uuid4(), sections)

        assert status.overall_status == ComplianceOverallStatus.VIOLATIONS
        assert status.empty_sections == ["Project Narrative"]
        # 50 * 1/2 completed + 50 * 2/2 within limits
        assert status.compliance_score == 75

    def test_short_optional_section_is_not_empty(self, make_section):
        sections = [make_section(content="Too short.", is_required=False)]

        status = evaluate_compliance(uuid4(), sections)

        assert status.empty_sections == []
        assert status.overall_status == ComplianceOverallStatus.COMPLETE

    def test_html_stripped_before_counting(self, make_section):
        section = make_section(content=f"<p>{LONG_CONTENT}</p>")

        status = evaluate_compliance(uuid4(), [section])

        assert status.required_sections[0].word_count == len(LONG_CONTENT.split())
        assert status.required_sections[0].char_count == len(LONG_CONTENT)

    def test_word_limit_blocking_overage(self, make_section):
        section = make_section(section_name="Need Statement", content=_words(120), word_limit=100)

        status = evaluate_compliance(uuid4(), [section])

        assert status.overall_status == ComplianceOverallStatus.VIOLATIONS
        violation = status.limit_violations[0]
        assert violation.limit_type == LimitType.WORD
        assert violation.actual == 120
        assert violation.overage_percent == 20
        assert get_blocking_violations(status) == [violation]
        assert get_warning_violations(status) == []

    def test_word_limit_small_overage_warns(self, make_section):
        section = make_section(section_name="Need Statement", content=_words(105), word_limit=100)

        status = evaluate_compliance(uuid4(), [section])

        assert status.overall_status == ComplianceOverallStatus.INCOMPLETE
        assert get_blocking_violations(status) == []
        assert [v.overage_percent for v in get_warning_violations(status)] == [5]
        assert status.compliance_score == 50

    def test_char_limit(self, make_section):
        section = make_section(content=LONG_CONTENT, char_limit=60)

        status = evaluate_compliance(uuid4(), [section])

        assert status.limit_violations[0].limit_type == LimitType.CHAR

    def test_missing_required_section(self, make_section):
        requirements = {
            "sections": [
                {"name": "Evaluation Plan", "isRequired": True},
                {"name": "Budget", "is_required": True},
                {"name": "Appendix", "is_required": False},
            ]
        }

        status = evaluate_compliance(uuid4(), [make_section(section_name="budget", content=LONG_CONTENT)], requirements)

        assert status.missing_sections == ["Evaluation Plan"]
        assert status.overall_status == ComplianceOverallStatus.VIOLATIONS

    def test_no_sections(self):
        status = evaluate_compliance(uuid4(), [])

        assert status.compliance_score == 100
        assert status.overall_status == ComplianceOverallStatus.COMPLETE


class TestFindMissingSections:

    def test_underscore_variants_match(self):
        requirements = {"sections": [{"name": "Evaluation Plan", "is_required": True}]}

        assert find_missing_sections(requirements, ["evaluation_plan"]) == []

    def test_malformed_requirements(self):
        assert find_missing_sections(None, []) == []
        assert find_missing_sections({"sections": ["bad", {"is_required": True}]}, []) == []


class TestComplianceChecker:

    @pytest.mark.asyncio
    async def test_check_compliance(self, mock_session, make_section):
        checker = ComplianceChecker(mock_session)
        checker.proposal_repo = AsyncMock()
        checker.proposal_repo.get_by_id.return_value = SimpleNamespace(parsed_requirements=None)
        checker.section_repo = AsyncMock()
        checker.section_repo.get_by_proposal.return_value = [make_section(content=LONG_CONTENT)]

        status = await checker.check_compliance(uuid4())

        assert status.overall_status == ComplianceOverallStatus.COMPLETE
        assert status.checked_at is not None

    @pytest.mark.asyncio
    async def test_missing_proposal(self, mock_session):
        checker = ComplianceChecker(mock_session)
        checker.proposal_repo = AsyncMock()
        checker.proposal_repo.get_by_id.return_value = None

        with pytest.raises(ProposalNotFoundError):
            await checker.check_compliance(uuid4())
