"""Proposal-level coverage aggregated from persisted section coverage."""

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.repositories.attribution_repository import SectionCoverageRepository
from grantguard.repositories.proposal_repository import ProposalRepository, SectionRepository
from grantguard.schemas.enforcement import LowestSection, ProposalCoverage, SectionCoverage
from grantguard.services.enforcement.citation_mapper import CitationMapper, coverage_from_record
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


def compute_overall_coverage(
    section_scores: Sequence[SectionCoverage],
    proposal_id: UUID,
    computed_at: Optional[datetime] = None,
) -> ProposalCoverage:
    """Paragraph-weighted aggregate of section coverage.

    Sections with more paragraphs weigh more; partial paragraphs count half.
    The lowest section is the first one with the minimum score.

    Args:
        section_scores: Coverage of each section that has a record
        proposal_id: Proposal the sections belong to
        computed_at: Timestamp to stamp on the result

    Returns:
        ProposalCoverage with an overall score of 0 when there are no paragraphs
    """
    total_paragraphs = sum(s.total_paragraphs for s in section_scores)
    weighted_grounded = sum(s.grounded_count + 0.5 * s.partial_count for s in section_scores)
    overall = round(100 * weighted_grounded / total_paragraphs) if total_paragraphs > 0 else 0

    lowest = None
    if section_scores:
        lowest_section = min(section_scores, key=lambda s: s.coverage_score)
        lowest = LowestSection(name=lowest_section.section_name, score=lowest_section.coverage_score)

    documents = {d.document_id for s in section_scores for d in s.source_documents}

    return ProposalCoverage(
        proposal_id=proposal_id,
        overall_score=overall,
        section_scores=list(section_scores),
        lowest_section=lowest,
        documents_used=len(documents),
        total_paragraphs=total_paragraphs,
        grounded_paragraphs=round(weighted_grounded),
        computed_at=computed_at,
    )


class CoverageScorer:
    """Computes and recomputes proposal coverage.

    Attributes:
        session: Database session used for reads
        session_factory: Creates an independent session per section during
            recomputation
    """

    def __init__(
        self,
        session: AsyncSession,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        retriever=None,
        thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
        top_k: int = 10,
    ):
        self.session = session
        self.session_factory = session_factory
        self.retriever = retriever
        self.thresholds = thresholds
        self.top_k = top_k
        self.coverage_repo = SectionCoverageRepository(session)
        self.section_repo = SectionRepository(session)
        self.proposal_repo = ProposalRepository(session)

    async def compute_proposal_coverage(self, proposal_id: UUID) -> Optional[ProposalCoverage]:
        """Aggregate stored section coverage for a proposal.

        Returns:
            ProposalCoverage, or None when no section has a coverage record
        """
        rows = await self.coverage_repo.get_by_proposal(proposal_id)
        if not rows:
            return None
        section_scores = [coverage_from_record(record, name) for record, name in rows]
        return compute_overall_coverage(section_scores, proposal_id, datetime.now(timezone.utc))

    async def _map_section(self, section_id: UUID, content: str, organization_id: Optional[UUID]) -> None:
        if self.session_factory is None:
            from grantguard.core.database import async_session_maker
            factory = async_session_maker
        else:
            factory = self.session_factory

        async with factory() as session:
            mapper = CitationMapper(
                session, retriever=self.retriever, thresholds=self.thresholds, top_k=self.top_k
            )
            await mapper.map_and_persist(section_id, content, chunks=None, organization_id=organization_id)

    async def recompute_all_sections(self, proposal_id: UUID) -> Optional[ProposalCoverage]:
        """Re-attribute every non-empty section, then aggregate.

        Sections run concurrently, each on its own session. A section that
        fails is logged and keeps its previous record.
        """
        sections = await self.section_repo.get_by_proposal(proposal_id)
        proposal = await self.proposal_repo.get_by_id(proposal_id)
        organization_id = proposal.organization_id if proposal else None

        targets = [s for s in sections if s.content and s.content.strip()]
        results: List = await asyncio.gather(
            *(self._map_section(s.id, s.content, organization_id) for s in targets),
            return_exceptions=True,
        )

        failed = 0
        for section, outcome in zip(targets, results):
            if isinstance(outcome, Exception):
                failed += 1
                LOGGER.error(
                    "Failed to compute coverage for section",
                    exc_info=outcome,
                    extra={"section_id": str(section.id), "proposal_id": str(proposal_id)}
                )

        LOGGER.info(
            "Recomputed proposal coverage",
            extra={"proposal_id": str(proposal_id), "sections": len(targets), "failed": failed}
        )
        return await self.compute_proposal_coverage(proposal_id)
