"""Tests for the export gatekeeper and its rule table."""

import asyncio

import pytest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from grantguard.core.exceptions import AuditRecordNotFoundError, ProposalNotFoundError
from grantguard.schemas.enforcement import (
    AmbiguityFlag,
    AmbiguitySummary,
    ClaimStatus,
    ClaimType,
    ClaimVerificationSummary,
    EnforcementData,
    ExportDecision,
    ExportFormat,
    PlaceholderSummary,
    ProposalCoverage,
    RiskLevel,
    RuleAction,
    VerifiedClaim,
    WarningSeverity,
    AmbiguityType,
)
from grantguard.services.enforcement.compliance_checker import evaluate_compliance
from grantguard.services.enforcement.export_gate import (
    ATTESTATION_TEXT,
    FAIL_CLOSED_RULE_ID,
    ExportGatekeeper,
    build_snapshot,
    evaluate_rules,
)
from grantguard.services.enforcement.export_rules import ExportRule
from grantguard.services.enforcement.placeholder_service import PlaceholderService
from grantguard.services.enforcement.placeholders import contains_blocking_placeholder
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS
from grantguard.services.generation.generation_service import GenerationService


def _coverage(score: int) -> ProposalCoverage:
    return ProposalCoverage(proposal_id=uuid4(), overall_score=score)


def _claims(*claims: VerifiedClaim) -> ClaimVerificationSummary:
    unverified_high = sum(
        1 for c in claims if c.risk_level == RiskLevel.HIGH and c.status == ClaimStatus.UNVERIFIED
    )
    return ClaimVerificationSummary(
        proposal_id=uuid4(),
        total_claims=len(claims),
        high_risk_unverified=unverified_high,
        claims=list(claims),
    )


def _rule_ids(result):
    return [b.rule_id for b in result.blocks], [w.rule_id for w in result.warnings]


def _audit_row(**kwargs):
    return SimpleNamespace(id=uuid4(), attestation_text=None, attestation_timestamp=None, **kwargs)


class TestEvaluateRules:

    def test_empty_data_allows(self):
        result = evaluate_rules(EnforcementData())

        assert result.decision == ExportDecision.ALLOW
        assert result.allowed is True
        assert result.blocks == [] and result.warnings == []

    def test_low_coverage_warns_with_attestation(self):
        result = evaluate_rules(EnforcementData(coverage=_coverage(40)))

        assert result.decision == ExportDecision.WARN
        assert result.allowed is True
        assert _rule_ids(result) == ([], ["COVERAGE_LOW"])
        assert result.warnings[0].severity == WarningSeverity.HIGH
        assert result.attestation_required is True
        assert result.attestation_text == ATTESTATION_TEXT

    def test_critical_coverage_blocks(self):
        result = evaluate_rules(EnforcementData(coverage=_coverage(20)))

        assert result.decision == ExportDecision.BLOCK
        assert result.allowed is False
        assert _rule_ids(result) == (["COVERAGE_CRITICAL"], [])
        assert result.attestation_required is False

    def test_coverage_boundaries(self):
        assert evaluate_rules(EnforcementData(coverage=_coverage(30))).decision == ExportDecision.WARN
        assert evaluate_rules(EnforcementData(coverage=_coverage(50))).decision == ExportDecision.ALLOW

    def test_high_risk_unverified_blocks(self):
        claims = _claims(
            VerifiedClaim(type=ClaimType.PERCENTAGE, value="45%", risk_level=RiskLevel.HIGH, status=ClaimStatus.UNVERIFIED),
            VerifiedClaim(type=ClaimType.NUMBER, value="300", risk_level=RiskLevel.HIGH, status=ClaimStatus.VERIFIED),
        )

        result = evaluate_rules(EnforcementData(claims=claims))

        assert result.blocks[0].rule_id == "HIGH_RISK_UNVERIFIED"
        assert result.blocks[0].affected_items == ["45%"]

    def test_medium_risk_unverified_warns(self):
        claims = _claims(
            VerifiedClaim(type=ClaimType.DATE, value="2019", risk_level=RiskLevel.MEDIUM, status=ClaimStatus.UNVERIFIED),
        )

        result = evaluate_rules(EnforcementData(claims=claims))

        assert _rule_ids(result) == ([], ["UNVERIFIED_MEDIUM_CLAIMS"])
        assert result.attestation_required is False

    def test_empty_required_section_blocks(self, make_section):
        compliance = evaluate_compliance(uuid4(), [make_section(section_name="Project Narrative", content="")])

        result = evaluate_rules(EnforcementData(compliance=compliance))

        assert result.decision == ExportDecision.BLOCK
        assert result.blocks[0].rule_id == "REQUIRED_SECTION_EMPTY"
        assert result.blocks[0].affected_items == ["Project Narrative"]

    def test_word_limit_critical(self, make_section):
        section = make_section(section_name="Need Statement", content=" ".join(["word"] * 120), word_limit=100)
        compliance = evaluate_compliance(uuid4(), [section])

        result = evaluate_rules(EnforcementData(compliance=compliance))

        assert _rule_ids(result) == (["WORD_LIMIT_CRITICAL"], [])
        assert "Need Statement (20% over)" in result.blocks[0].reason

    def test_word_limit_warn_only(self, make_section):
        section = make_section(section_name="Need Statement", content=" ".join(["word"] * 105), word_limit=100)
        compliance = evaluate_compliance(uuid4(), [section])

        result = evaluate_rules(EnforcementData(compliance=compliance))

        assert _rule_ids(result) == ([], ["WORD_LIMIT_WARN"])
        assert result.warnings[0].severity == WarningSeverity.LOW

    def test_unresolved_placeholders_block(self):
        placeholders = PlaceholderSummary(
            total=1, unresolved=1, by_type={"MISSING_DATA": 1, "USER_INPUT_REQUIRED": 0, "VERIFICATION_NEEDED": 0}
        )

        result = evaluate_rules(EnforcementData(placeholders=placeholders))

        assert _rule_ids(result)[0] == ["UNRESOLVED_PLACEHOLDER"]

    def test_many_verification_placeholders_warn(self):
        placeholders = PlaceholderSummary(
            total=4, unresolved=4, by_type={"MISSING_DATA": 0, "USER_INPUT_REQUIRED": 0, "VERIFICATION_NEEDED": 4}
        )

        result = evaluate_rules(EnforcementData(placeholders=placeholders))

        assert _rule_ids(result) == ([], ["VERIFICATION_PLACEHOLDERS"])

    def test_unresolved_ambiguity_blocks(self):
        ambiguities = AmbiguitySummary(
            proposal_id=uuid4(),
            ambiguities=[
                AmbiguityFlag(type=AmbiguityType.CONTRADICTORY, description="brief vs comprehensive", requires_user_input=True),
                AmbiguityFlag(type=AmbiguityType.VAGUE, description="adequate budget"),
            ],
        )

        result = evaluate_rules(EnforcementData(ambiguities=ambiguities))

        assert result.blocks[0].rule_id == "UNRESOLVED_AMBIGUITY"
        assert result.blocks[0].affected_items == ["brief vs comprehensive"]

    def test_enforcement_failure_and_null_coverage(self):
        result = evaluate_rules(EnforcementData(enforcement_failure=True, has_generated_content=True))

        assert _rule_ids(result)[0] == ["ENFORCEMENT_FAILURE_FLAG", "NULL_COVERAGE_DATA"]

    def test_generic_knowledge_blocks(self):
        result = evaluate_rules(EnforcementData(sections_with_generic_knowledge=["Evaluation Plan"]))

        assert result.blocks[0].rule_id == "GENERIC_KNOWLEDGE_CONTENT"
        assert result.blocks[0].affected_items == ["Evaluation Plan"]

    def test_failing_rule_is_skipped(self):
        def broken(data, thresholds):
            raise KeyError("boom")

        rules = [
            ExportRule(id="BROKEN", ac="AC-0", action=RuleAction.BLOCK, check=broken, message=lambda d, t: ""),
            ExportRule(
                id="ALWAYS_WARN",
                ac="AC-0",
                action=RuleAction.WARN,
                check=lambda d, t: True,
                message=lambda d, t: "warned",
            ),
        ]

        result = evaluate_rules(EnforcementData(), DEFAULT_THRESHOLDS, rules)

        assert _rule_ids(result) == ([], ["ALWAYS_WARN"])
        assert result.warnings[0].severity == WarningSeverity.MEDIUM


class TestSnapshot:

    def test_snapshot_without_data(self):
        snapshot = build_snapshot(None)

        assert snapshot.model_dump() == {
            "coverage_score": None,
            "verification_rate": None,
            "compliance_score": None,
            "voice_score": None,
        }

    def test_snapshot_with_coverage(self):
        assert build_snapshot(EnforcementData(coverage=_coverage(64))).coverage_score == 64


@pytest.fixture
def gatekeeper(mock_session):
    gatekeeper = ExportGatekeeper(mock_session)
    gatekeeper.audit_repo = AsyncMock()
    gatekeeper.audit_repo.create.side_effect = _audit_row
    gatekeeper.proposal_repo = AsyncMock()
    gatekeeper.section_repo = AsyncMock()
    gatekeeper.section_repo.get_by_proposal.return_value = []
    gatekeeper.placeholder_service = AsyncMock()
    gatekeeper.citation_mapper = AsyncMock()
    gatekeeper.claim_verifier = AsyncMock()
    return gatekeeper


class TestExportGatekeeper:

    @pytest.mark.asyncio
    async def test_gather_failure_fails_closed(self, gatekeeper, mock_session):
        gatekeeper.gather_enforcement_data = AsyncMock(side_effect=RuntimeError("database unavailable"))
        proposal_id = uuid4()

        evaluation = await gatekeeper.evaluate(proposal_id, "user-1", ExportFormat.PDF)

        result = evaluation.gate_result
        assert result.decision == ExportDecision.BLOCK
        assert result.allowed is False
        assert [b.rule_id for b in result.blocks] == [FAIL_CLOSED_RULE_ID]
        assert result.warnings == []
        mock_session.rollback.assert_awaited()

        gatekeeper.audit_repo.create.assert_awaited_once()
        audit = evaluation.audit_record
        assert audit.proposal_id == proposal_id
        assert audit.decision == ExportDecision.BLOCK
        assert audit.export_format == ExportFormat.PDF
        assert audit.enforcement_snapshot.coverage_score is None
        assert audit.enforcement_snapshot.compliance_score is None

    @pytest.mark.asyncio
    async def test_evaluate_writes_one_audit(self, gatekeeper, mock_session):
        gatekeeper.gather_enforcement_data = AsyncMock(return_value=EnforcementData(coverage=_coverage(40)))

        evaluation = await gatekeeper.evaluate(uuid4(), "user-1", "DOCX")

        assert evaluation.gate_result.decision == ExportDecision.WARN
        assert evaluation.audit_record.enforcement_snapshot.coverage_score == 40
        assert [w.rule_id for w in evaluation.audit_record.warnings] == ["COVERAGE_LOW"]
        gatekeeper.audit_repo.create.assert_awaited_once()
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gather_enforcement_data(self, gatekeeper, make_section):
        compliance = evaluate_compliance(uuid4(), [])
        gatekeeper._load_compliance = AsyncMock(return_value=compliance)
        gatekeeper._load_placeholders = AsyncMock(return_value=PlaceholderSummary())
        gatekeeper._load_ambiguities = AsyncMock(return_value=AmbiguitySummary(proposal_id=uuid4()))
        gatekeeper.proposal_repo.get_enforcement_failure.return_value = False
        gatekeeper.section_repo.get_by_proposal.return_value = [
            make_section(section_name="Need", content="Grounded text.", enforcement_applied=True),
            make_section(section_name="Evaluation", content="Generic text.", used_generic_knowledge=True),
            make_section(section_name="Budget", content="", used_generic_knowledge=True),
        ]

        with patch("grantguard.services.enforcement.export_gate.CoverageScorer") as scorer_cls, \
                patch("grantguard.services.enforcement.export_gate.ClaimVerifier") as verifier_cls:
            scorer_cls.return_value.compute_proposal_coverage = AsyncMock(return_value=_coverage(72))
            verifier_cls.return_value.get_verification_summary = AsyncMock(return_value=None)

            data = await gatekeeper.gather_enforcement_data(uuid4())

        assert data.coverage.overall_score == 72
        assert data.claims is None
        assert data.compliance == compliance
        assert data.has_generated_content is True
        assert data.sections_with_generic_knowledge == ["Evaluation"]

    @pytest.mark.asyncio
    async def test_record_attestation(self, gatekeeper):
        audit_id = uuid4()
        row = _audit_row(
            proposal_id=uuid4(),
            user_id="user-1",
            export_format="DOCX",
            decision="WARN",
            blocks=[],
            warnings=[],
            enforcement_snapshot={"coverage_score": 40},
            created_at=datetime.now(timezone.utc),
        )
        row.attestation_text = ATTESTATION_TEXT
        row.attestation_timestamp = datetime.now(timezone.utc)
        gatekeeper.audit_repo.record_attestation.return_value = row

        record = await gatekeeper.record_attestation(audit_id, ATTESTATION_TEXT)

        assert record.attestation_text == ATTESTATION_TEXT
        assert record.attestation_timestamp is not None
        gatekeeper.audit_repo.record_attestation.assert_awaited_once_with(audit_id, ATTESTATION_TEXT)

    @pytest.mark.asyncio
    async def test_record_attestation_unknown_audit(self, gatekeeper):
        gatekeeper.audit_repo.record_attestation.return_value = None

        with pytest.raises(AuditRecordNotFoundError):
            await gatekeeper.record_attestation(uuid4(), ATTESTATION_TEXT)


class TestEnforcementRefresh:

    @pytest.mark.asyncio
    async def test_refresh_rescans_remaps_and_reverifies(self, gatekeeper, make_section):
        proposal = SimpleNamespace(id=uuid4(), organization_id=uuid4())
        need = make_section(section_name="Need", content="<p>Regenerated need statement.</p>")
        budget = make_section(section_name="Budget", content="")
        gatekeeper.proposal_repo.get_by_id.return_value = proposal
        gatekeeper.section_repo.get_by_proposal.return_value = [need, budget]

        await gatekeeper.refresh_enforcement_records(proposal.id)

        gatekeeper.placeholder_service.scan_and_persist.assert_awaited_once_with(proposal.id)
        mapped = [c.args for c in gatekeeper.citation_mapper.map_and_persist.await_args_list]
        assert mapped == [(need.id, need.content), (budget.id, "")]
        gatekeeper.claim_verifier.extract_and_verify_proposal.assert_awaited_once_with(
            proposal.id, proposal.organization_id
        )

    @pytest.mark.asyncio
    async def test_evaluate_refreshes_before_gathering(self, gatekeeper):
        calls = []
        gatekeeper.refresh_enforcement_records = AsyncMock(side_effect=lambda pid: calls.append("refresh"))

        async def gather(proposal_id):
            calls.append("gather")
            return EnforcementData(coverage=_coverage(80))

        gatekeeper.gather_enforcement_data = gather

        evaluation = await gatekeeper.evaluate(uuid4(), "user-1", ExportFormat.DOCX)

        assert calls == ["refresh", "gather"]
        assert evaluation.gate_result.decision == ExportDecision.ALLOW

    @pytest.mark.asyncio
    async def test_refresh_failure_fails_closed(self, gatekeeper, mock_session):
        gatekeeper.proposal_repo.get_by_id.return_value = None
        gatekeeper.gather_enforcement_data = AsyncMock()

        evaluation = await gatekeeper.evaluate(uuid4(), "user-1", ExportFormat.PDF)

        assert [b.rule_id for b in evaluation.gate_result.blocks] == [FAIL_CLOSED_RULE_ID]
        gatekeeper.gather_enforcement_data.assert_not_awaited()
        mock_session.rollback.assert_awaited()
        gatekeeper.audit_repo.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refresh_missing_proposal(self, gatekeeper):
        gatekeeper.proposal_repo.get_by_id.return_value = None

        with pytest.raises(ProposalNotFoundError):
            await gatekeeper.refresh_enforcement_records(uuid4())

    @pytest.mark.asyncio
    async def test_evaluate_without_refresh(self, gatekeeper):
        gatekeeper.refresh_enforcement_records = AsyncMock()
        gatekeeper.gather_enforcement_data = AsyncMock(return_value=EnforcementData(coverage=_coverage(80)))

        await gatekeeper.evaluate(uuid4(), "user-1", ExportFormat.DOCX, refresh=False)

        gatekeeper.refresh_enforcement_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_load_cancels_sibling_loads(self, gatekeeper):
        cancelled = []

        async def slow_load(proposal_id):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(proposal_id)
                raise

        async def failing_load(proposal_id):
            await asyncio.sleep(0)
            raise RuntimeError("compliance store unavailable")

        gatekeeper._load_compliance = failing_load
        gatekeeper._load_placeholders = slow_load
        gatekeeper._load_ambiguities = slow_load
        proposal_id = uuid4()

        with pytest.raises(ExceptionGroup):
            await gatekeeper.gather_enforcement_data(proposal_id)

        assert cancelled == [proposal_id, proposal_id]


class InMemoryPlaceholderRepository:
    """Placeholder rows shared by every PlaceholderService in a test."""

    def __init__(self):
        self.rows = []

    async def get_by_proposal(self, proposal_id):
        return list(self.rows)

    async def delete_by_section(self, section_id):
        before = len(self.rows)
        self.rows = [r for r in self.rows if r.section_id != section_id]
        return before - len(self.rows)

    async def bulk_create(self, rows):
        created = []
        for fields in rows:
            record = SimpleNamespace(id=uuid4(), resolved_value=None, resolved_by=None, resolved_at=None)
            vars(record).update(fields)
            created.append(record)
        self.rows.extend(created)
        return created


class TestGeneratedContentAtExport:

    @pytest.mark.asyncio
    async def test_refused_draft_blocks_export_without_manual_scan(self, mock_session, make_section):
        proposal = SimpleNamespace(
            id=uuid4(),
            organization_id=uuid4(),
            title="Literacy Expansion",
            funder_name="County Community Fund",
            parsed_requirements=None,
        )
        section = make_section(section_name="Budget", proposal_id=proposal.id)

        retriever = AsyncMock()
        retriever.retrieve.return_value = []
        generation = GenerationService(mock_session, retriever=retriever)
        generation.section_repo = AsyncMock()
        generation.section_repo.get_by_id.return_value = section
        generation.proposal_repo = AsyncMock()
        generation.proposal_repo.get_by_id.return_value = proposal
        generation.enforcer.metadata_repo = AsyncMock()
        generation.enforcer.section_repo = AsyncMock()
        generation.placeholder_service = AsyncMock()
        generation.citation_mapper = AsyncMock()

        draft = await generation.generate_section_draft(section.id)
        section.content = draft.saved_content
        section.enforcement_applied = True
        assert contains_blocking_placeholder(section.content)

        store = InMemoryPlaceholderRepository()

        def placeholder_service(session):
            service = PlaceholderService(session)
            service.repository = store
            service.proposal_repo = AsyncMock()
            service.proposal_repo.get_by_id.return_value = proposal
            service.section_repo = AsyncMock()
            service.section_repo.get_by_proposal.return_value = [section]
            return service

        gate = "grantguard.services.enforcement.export_gate"
        with patch(f"{gate}.PlaceholderService", side_effect=placeholder_service), \
                patch(f"{gate}.CitationMapper") as mapper_cls, \
                patch(f"{gate}.ClaimVerifier") as verifier_cls, \
                patch(f"{gate}.CoverageScorer") as scorer_cls, \
                patch(f"{gate}.ComplianceChecker") as checker_cls, \
                patch(f"{gate}.AmbiguityDetector") as detector_cls:
            mapper_cls.return_value.map_and_persist = AsyncMock()
            verifier_cls.return_value.extract_and_verify_proposal = AsyncMock()
            verifier_cls.return_value.get_verification_summary = AsyncMock(return_value=None)
            scorer_cls.return_value.compute_proposal_coverage = AsyncMock(return_value=_coverage(80))
            checker_cls.return_value.check_compliance = AsyncMock(
                return_value=evaluate_compliance(proposal.id, [section])
            )
            detector_cls.return_value.get_ambiguity_summary = AsyncMock(
                return_value=AmbiguitySummary(proposal_id=proposal.id)
            )

            gatekeeper = ExportGatekeeper(mock_session, session_factory=AsyncMock)
            gatekeeper.audit_repo = AsyncMock()
            gatekeeper.audit_repo.create.side_effect = _audit_row
            gatekeeper.proposal_repo = AsyncMock()
            gatekeeper.proposal_repo.get_by_id.return_value = proposal
            gatekeeper.proposal_repo.get_enforcement_failure.return_value = False
            gatekeeper.section_repo = AsyncMock()
            gatekeeper.section_repo.get_by_proposal.return_value = [section]

            evaluation = await gatekeeper.evaluate(proposal.id, "user-1", ExportFormat.DOCX)

        blocks, _ = _rule_ids(evaluation.gate_result)
        assert evaluation.gate_result.decision == ExportDecision.BLOCK
        assert "UNRESOLVED_PLACEHOLDER" in blocks
        assert [r.placeholder_type for r in store.rows] == ["MISSING_DATA"]
        mapper_cls.return_value.map_and_persist.assert_awaited_once_with(
            section.id, section.content, organization_id=proposal.organization_id
        )
        verifier_cls.return_value.extract_and_verify_proposal.assert_awaited_once_with(
            proposal.id, proposal.organization_id
        )
