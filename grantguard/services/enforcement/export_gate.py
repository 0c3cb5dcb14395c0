"""Export gatekeeper: the single decision point for exporting a proposal.

Stored enforcement records are refreshed from current section content
before every decision: placeholders are re-scanned, citations re-mapped and
claims re-verified. Refreshing and gathering are all-or-nothing. If any part of it fails the
gate returns one synthetic ENFORCEMENT_FAILURE block. Either way exactly one
audit record is written per evaluation.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.core.exceptions import AuditRecordNotFoundError, ProposalNotFoundError
from grantguard.database.models import ExportAuditLog
from grantguard.repositories.export_audit_repository import ExportAuditRepository
from grantguard.repositories.proposal_repository import ProposalRepository, SectionRepository
from grantguard.schemas.enforcement import (
    AmbiguitySummary,
    ComplianceStatus,
    EnforcementData,
    EnforcementSnapshot,
    ExportAuditRecord,
    ExportBlock,
    ExportDecision,
    ExportEvaluation,
    ExportFormat,
    ExportGateResult,
    ExportWarning,
    PlaceholderSummary,
    RuleAction,
    WarningSeverity,
)
from grantguard.services.enforcement.ambiguity_detector import AmbiguityDetector
from grantguard.services.enforcement.citation_mapper import CitationMapper
from grantguard.services.enforcement.claim_verifier import ClaimVerifier
from grantguard.services.enforcement.compliance_checker import ComplianceChecker
from grantguard.services.enforcement.coverage_scorer import CoverageScorer
from grantguard.services.enforcement.export_rules import (
    DEFAULT_RESOLUTION,
    DEFAULT_WARNING_SEVERITY,
    EXPORT_RULES,
    ExportRule,
)
from grantguard.services.enforcement.placeholder_service import PlaceholderService
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)

FAIL_CLOSED_RULE_ID = "ENFORCEMENT_FAILURE"
FAIL_CLOSED_AC = "AC-5.3"
FAIL_CLOSED_REASON = "Could not verify proposal compliance. Please try again."
FAIL_CLOSED_RESOLUTION = "Refresh the page and try exporting again. If the problem persists, contact support."

ATTESTATION_TEXT = (
    "I have reviewed the AI-generated content and verify its accuracy for submission to the funder."
)


def fail_closed_result() -> ExportGateResult:
    return ExportGateResult(
        allowed=False,
        decision=ExportDecision.BLOCK,
        blocks=[ExportBlock(
            rule_id=FAIL_CLOSED_RULE_ID,
            ac=FAIL_CLOSED_AC,
            reason=FAIL_CLOSED_REASON,
            affected_items=[],
            resolution=FAIL_CLOSED_RESOLUTION,
        )],
        warnings=[],
        attestation_required=False,
    )


def evaluate_rules(
    data: EnforcementData,
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
    rules: Sequence[ExportRule] = EXPORT_RULES,
) -> ExportGateResult:
    """Run the rule table over gathered data.

    A rule that raises is logged and treated as not firing.

    Args:
        data: Gathered enforcement data
        thresholds: Thresholds the rules compare against
        rules: Ordered rule table

    Returns:
        ExportGateResult with BLOCK if any block fired, WARN if any warning
        fired, ALLOW otherwise
    """
    blocks: List[ExportBlock] = []
    warnings: List[ExportWarning] = []

    for rule in rules:
        try:
            if not rule.check(data, thresholds):
                continue
            affected = list(rule.affected_items(data, thresholds)) if rule.affected_items else []
            if rule.action == RuleAction.BLOCK:
                blocks.append(ExportBlock(
                    rule_id=rule.id,
                    ac=rule.ac,
                    reason=rule.message(data, thresholds),
                    affected_items=affected,
                    resolution=rule.resolution or DEFAULT_RESOLUTION,
                ))
            else:
                warnings.append(ExportWarning(
                    rule_id=rule.id,
                    ac=rule.ac,
                    severity=rule.severity or DEFAULT_WARNING_SEVERITY,
                    message=rule.message(data, thresholds),
                    affected_items=affected,
                ))
        except Exception as e:
            LOGGER.error(
                f"Export rule {rule.id} evaluation failed",
                exc_info=True,
                extra={"rule_id": rule.id, "error": str(e)}
            )

    if blocks:
        decision = ExportDecision.BLOCK
    elif warnings:
        decision = ExportDecision.WARN
    else:
        decision = ExportDecision.ALLOW

    attestation_required = decision == ExportDecision.WARN and any(
        w.severity == WarningSeverity.HIGH for w in warnings
    )

    return ExportGateResult(
        allowed=decision != ExportDecision.BLOCK,
        decision=decision,
        blocks=blocks,
        warnings=warnings,
        attestation_required=attestation_required,
        attestation_text=ATTESTATION_TEXT if attestation_required else None,
    )


def build_snapshot(data: Optional[EnforcementData]) -> EnforcementSnapshot:
    if data is None:
        return EnforcementSnapshot()
    return EnforcementSnapshot(
        coverage_score=data.coverage.overall_score if data.coverage else None,
        verification_rate=data.claims.verification_rate if data.claims else None,
        compliance_score=data.compliance.compliance_score if data.compliance else None,
        voice_score=None,
    )


def audit_record_from_row(row: ExportAuditLog) -> ExportAuditRecord:
    return ExportAuditRecord(
        id=row.id,
        proposal_id=row.proposal_id,
        user_id=row.user_id,
        export_format=ExportFormat(row.export_format),
        decision=ExportDecision(row.decision),
        blocks=[ExportBlock(**b) for b in (row.blocks or [])],
        warnings=[ExportWarning(**w) for w in (row.warnings or [])],
        enforcement_snapshot=EnforcementSnapshot(**(row.enforcement_snapshot or {})),
        attestation_text=row.attestation_text,
        attestation_timestamp=row.attestation_timestamp,
        created_at=row.created_at,
    )


class ExportGatekeeper:
    """Evaluates export rules for a proposal and keeps the audit trail.

    Attributes:
        session: Session used for proposal reads and audit writes
        session_factory: Creates the independent sessions used by the
            concurrent part of gathering
        thresholds: Thresholds passed to every rule
        retriever: Source chunks for re-mapping citations and re-verifying
            claims; without one paragraphs are FAILED and claims UNVERIFIED
    """

    def __init__(
        self,
        session: AsyncSession,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
        retriever=None,
    ):
        self.session = session
        self.session_factory = session_factory
        self.thresholds = thresholds
        self.audit_repo = ExportAuditRepository(session)
        self.proposal_repo = ProposalRepository(session)
        self.section_repo = SectionRepository(session)
        self.placeholder_service = PlaceholderService(session)
        self.citation_mapper = CitationMapper(session, retriever=retriever, thresholds=thresholds)
        self.claim_verifier = ClaimVerifier(session, retriever=retriever, thresholds=thresholds)

    @asynccontextmanager
    async def _independent_session(self) -> AsyncIterator[AsyncSession]:
        if self.session_factory is None:
            from grantguard.core.database import async_session_maker
            factory = async_session_maker
        else:
            factory = self.session_factory
        async with factory() as session:
            yield session

    async def _load_compliance(self, proposal_id: UUID) -> ComplianceStatus:
        async with self._independent_session() as session:
            return await ComplianceChecker(session, self.thresholds).check_compliance(proposal_id)

    async def _load_placeholders(self, proposal_id: UUID) -> PlaceholderSummary:
        async with self._independent_session() as session:
            return await PlaceholderService(session).get_placeholder_summary(proposal_id)

    async def _load_ambiguities(self, proposal_id: UUID) -> AmbiguitySummary:
        async with self._independent_session() as session:
            return await AmbiguityDetector(session).get_ambiguity_summary(proposal_id)

    async def refresh_enforcement_records(self, proposal_id: UUID) -> None:
        """Recompute stored placeholders, attribution and claims from current content.

        Every section is re-mapped, including empty ones, so no section keeps
        coverage rows from content it no longer has. Runs sequentially on the
        request session; each step commits its own replacement.

        Raises:
            ProposalNotFoundError: If the proposal does not exist
        """
        proposal = await self.proposal_repo.get_by_id(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(f"Proposal not found: {proposal_id}")

        await self.placeholder_service.scan_and_persist(proposal_id)
        sections = await self.section_repo.get_by_proposal(proposal_id)
        for section in sections:
            await self.citation_mapper.map_and_persist(
                section.id, section.content or "", organization_id=proposal.organization_id
            )
        await self.claim_verifier.extract_and_verify_proposal(proposal_id, proposal.organization_id)

        LOGGER.info(
            "Refreshed enforcement records before export",
            extra={"proposal_id": str(proposal_id), "sections": len(sections)}
        )

    async def gather_enforcement_data(self, proposal_id: UUID) -> EnforcementData:
        """Collect everything the rules read.

        Compliance, placeholders and ambiguities load concurrently. If one
        load fails the others are cancelled and the failure propagates.
        """
        async with asyncio.TaskGroup() as group:
            compliance_task = group.create_task(self._load_compliance(proposal_id))
            placeholders_task = group.create_task(self._load_placeholders(proposal_id))
            ambiguities_task = group.create_task(self._load_ambiguities(proposal_id))
        compliance = compliance_task.result()
        placeholders = placeholders_task.result()
        ambiguities = ambiguities_task.result()

        coverage = await CoverageScorer(self.session, thresholds=self.thresholds).compute_proposal_coverage(
            proposal_id
        )
        claims = await ClaimVerifier(self.session, thresholds=self.thresholds).get_verification_summary(
            proposal_id
        )
        enforcement_failure = await self.proposal_repo.get_enforcement_failure(proposal_id)
        sections = await self.section_repo.get_by_proposal(proposal_id)

        has_content = [s for s in sections if (s.content or "").strip()]
        return EnforcementData(
            coverage=coverage,
            claims=claims,
            compliance=compliance,
            placeholders=placeholders,
            ambiguities=ambiguities,
            enforcement_failure=enforcement_failure,
            has_generated_content=any(s.enforcement_applied for s in has_content),
            sections_with_generic_knowledge=[s.section_name for s in has_content if s.used_generic_knowledge],
        )

    async def evaluate(
        self,
        proposal_id: UUID,
        user_id: str,
        export_format: ExportFormat,
        refresh: bool = True,
    ) -> ExportEvaluation:
        """Decide whether the proposal may be exported and log the attempt.

        Args:
            proposal_id: Proposal being exported
            user_id: User requesting the export
            export_format: Requested export format
            refresh: Recompute stored enforcement records first; a failure
                there blocks the export like a failure to gather

        Returns:
            ExportEvaluation with the gate result and its audit record
        """
        export_format = ExportFormat(export_format)
        data: Optional[EnforcementData] = None
        try:
            if refresh:
                await self.refresh_enforcement_records(proposal_id)
            data = await self.gather_enforcement_data(proposal_id)
        except Exception as e:
            LOGGER.error(
                "Failed to gather enforcement data, blocking export",
                exc_info=True,
                extra={"proposal_id": str(proposal_id), "error": str(e)}
            )
            # Reads may have left the shared session in a failed transaction
            await self.session.rollback()
            result = fail_closed_result()
        else:
            result = evaluate_rules(data, self.thresholds)

        audit = await self._create_audit_record(proposal_id, user_id, export_format, result, build_snapshot(data))

        LOGGER.info(
            "Evaluated export gate",
            extra={
                "proposal_id": str(proposal_id),
                "decision": result.decision.value,
                "blocks": [b.rule_id for b in result.blocks],
                "warnings": [w.rule_id for w in result.warnings],
                "audit_id": str(audit.id),
            }
        )
        return ExportEvaluation(gate_result=result, audit_record=audit)

    async def _create_audit_record(
        self,
        proposal_id: UUID,
        user_id: str,
        export_format: ExportFormat,
        result: ExportGateResult,
        snapshot: EnforcementSnapshot,
    ) -> ExportAuditRecord:
        try:
            row = await self.audit_repo.create(
                proposal_id=proposal_id,
                user_id=user_id,
                export_format=export_format.value,
                decision=result.decision.value,
                blocks=[b.model_dump(mode="json") for b in result.blocks],
                warnings=[w.model_dump(mode="json") for w in result.warnings],
                enforcement_snapshot=snapshot.model_dump(mode="json"),
                created_at=datetime.now(timezone.utc),
            )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        return audit_record_from_row(row)

    async def record_attestation(self, audit_id: UUID, attestation_text: str) -> ExportAuditRecord:
        """Stamp an audit record with the user's attestation.

        Raises:
            AuditRecordNotFoundError: If no audit record has that ID
        """
        try:
            row = await self.audit_repo.record_attestation(audit_id, attestation_text)
            if row is None:
                raise AuditRecordNotFoundError(f"Export audit record {audit_id} not found")
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        LOGGER.info("Recorded export attestation", extra={"audit_id": str(audit_id)})
        return audit_record_from_row(row)

    async def list_audit_records(self, proposal_id: UUID, limit: int = 50) -> List[ExportAuditRecord]:
        rows = await self.audit_repo.get_by_proposal(proposal_id, limit=limit)
        return [audit_record_from_row(r) for r in rows]


async def evaluate_export_gate(
    session: AsyncSession,
    proposal_id: UUID,
    user_id: str,
    export_format: ExportFormat,
    thresholds: Optional[EnforcementThresholds] = None,
    retriever=None,
) -> ExportEvaluation:
    """Entry point used by export surfaces."""
    gatekeeper = ExportGatekeeper(
        session,
        thresholds=thresholds or EnforcementThresholds.from_settings(),
        retriever=retriever,
    )
    return await gatekeeper.evaluate(proposal_id, user_id, export_format)
