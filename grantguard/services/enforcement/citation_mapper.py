"""Post-hoc attribution of stored section content to source chunks.

Generated content is not embedded, so attribution is lexical: each
paragraph is scored against every chunk with ``JaccardPhraseScorer`` and
classified GROUNDED / PARTIAL / UNGROUNDED. When retrieval yields nothing
the paragraphs are marked FAILED rather than silently UNGROUNDED.

Example usage:
    mapper = CitationMapper(session, retriever)
    result = await mapper.map_and_persist(section_id, section.content)
    print(result.section_coverage.coverage_score)
"""

import asyncio
import weakref
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.core.exceptions import SectionNotFoundError
from grantguard.repositories.attribution_repository import (
    AttributedParagraphRepository,
    SectionCoverageRepository,
)
from grantguard.repositories.proposal_repository import ProposalRepository, SectionRepository
from grantguard.schemas.enforcement import (
    AttributedChunk,
    AttributedParagraphResult,
    AttributionFlag,
    AttributionStatus,
    CitationMappingResult,
    RetrievedChunk,
    SectionCoverage,
    SourceContribution,
)
from grantguard.services.enforcement.placeholders import contains_placeholder
from grantguard.services.enforcement.similarity import JaccardPhraseScorer, TextSimilarityScorer
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from grantguard.utils.logging import get_logger
from grantguard.utils.text import split_paragraphs, strip_html

LOGGER = get_logger(__name__)

MIN_PARAGRAPH_WORDS = 3
SPAN_SEARCH_WORDS = 5
SPAN_SEARCH_CHARS = 20
SPAN_LEAD_CHARS = 20
SPAN_LENGTH = 100
UNKNOWN_DOCUMENT = "Unknown"

# Entries disappear once no caller holds or awaits the lock
_SECTION_LOCKS: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()


def section_lock(section_id: UUID) -> asyncio.Lock:
    """In-process lock serializing attribution writes for one section."""
    lock = _SECTION_LOCKS.get(section_id)
    if lock is None:
        lock = asyncio.Lock()
        _SECTION_LOCKS[section_id] = lock
    return lock


def split_attribution_paragraphs(content: str) -> List[str]:
    """Paragraphs of (possibly HTML) content with at least three words."""
    plain = strip_html(content, tag_replacement="\n")
    return [p for p in split_paragraphs(plain) if len(p.split()) >= MIN_PARAGRAPH_WORDS]


def find_best_matching_span(paragraph: str, chunk_text: str) -> str:
    """Excerpt of the chunk near where the paragraph's opening words occur.

    Falls back to the start of the chunk when the opening is not found.
    """
    search_phrase = " ".join(paragraph.lower().split()[:SPAN_SEARCH_WORDS])[:SPAN_SEARCH_CHARS]
    idx = chunk_text.lower().find(search_phrase) if search_phrase else -1
    if idx >= 0:
        start = max(0, idx - SPAN_LEAD_CHARS)
        return chunk_text[start:idx + SPAN_LENGTH] + "..."
    return chunk_text[:SPAN_LENGTH] + "..."


def _flags_for(status: AttributionStatus, text: str) -> List[AttributionFlag]:
    flags = []
    if status == AttributionStatus.UNGROUNDED:
        flags.append(AttributionFlag.NO_SOURCE)
    if status == AttributionStatus.PARTIAL:
        flags.append(AttributionFlag.LOW_CONFIDENCE)
    if contains_placeholder(text):
        flags.append(AttributionFlag.CONTAINS_PLACEHOLDER)
    return flags


def attribute_paragraph(
    text: str,
    index: int,
    section_id: UUID,
    chunks: Sequence[RetrievedChunk],
    scorer: Optional[TextSimilarityScorer] = None,
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> AttributedParagraphResult:
    """Score one paragraph against the chunks and classify it.

    Args:
        text: Paragraph text
        index: Paragraph position within the section
        section_id: Owning section
        chunks: Candidate source chunks
        scorer: Similarity strategy, Jaccard plus phrase overlap by default
        thresholds: Attribution thresholds

    Returns:
        AttributedParagraphResult with up to ``max_supporting_chunks``
        supporting chunks, best first
    """
    scorer = scorer or JaccardPhraseScorer()
    supporting: List[AttributedChunk] = []
    best_score = 0.0

    for chunk in chunks:
        similarity = scorer.score(text, chunk.content)
        if similarity < thresholds.partial_similarity:
            continue
        supporting.append(AttributedChunk(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            document_name=chunk.filename or UNKNOWN_DOCUMENT,
            similarity=similarity,
            matched_span=find_best_matching_span(text, chunk.content),
        ))
        best_score = max(best_score, similarity)

    supporting.sort(key=lambda c: c.similarity, reverse=True)

    if best_score >= thresholds.grounded_similarity:
        status = AttributionStatus.GROUNDED
    elif best_score >= thresholds.partial_similarity:
        status = AttributionStatus.PARTIAL
    else:
        status = AttributionStatus.UNGROUNDED

    return AttributedParagraphResult(
        section_id=section_id,
        index=index,
        text=text,
        supporting_chunks=supporting[:thresholds.max_supporting_chunks],
        attribution_score=best_score,
        status=status,
        flags=_flags_for(status, text),
    )


def failed_paragraph(text: str, index: int, section_id: UUID) -> AttributedParagraphResult:
    """Paragraph that could not be attributed because no sources were available."""
    flags = [AttributionFlag.ATTRIBUTION_FAILED, AttributionFlag.NO_SOURCE]
    if contains_placeholder(text):
        flags.append(AttributionFlag.CONTAINS_PLACEHOLDER)
    return AttributedParagraphResult(
        section_id=section_id,
        index=index,
        text=text,
        attribution_score=0.0,
        status=AttributionStatus.FAILED,
        flags=flags,
    )


def compute_section_coverage(
    section_id: UUID,
    section_name: str,
    paragraphs: Sequence[AttributedParagraphResult],
    computed_at: Optional[datetime] = None,
) -> SectionCoverage:
    """Aggregate attributed paragraphs into a section coverage score.

    Grounded paragraphs earn full credit and partial ones half credit;
    FAILED paragraphs count as ungrounded.
    """
    total = len(paragraphs)
    if total == 0:
        return SectionCoverage(section_id=section_id, section_name=section_name, computed_at=computed_at)

    grounded = sum(1 for p in paragraphs if p.status == AttributionStatus.GROUNDED)
    partial = sum(1 for p in paragraphs if p.status == AttributionStatus.PARTIAL)
    ungrounded = total - grounded - partial

    contributions: "OrderedDict[str, Dict]" = OrderedDict()
    for paragraph in paragraphs:
        for chunk in paragraph.supporting_chunks:
            entry = contributions.setdefault(
                chunk.document_id,
                {"document_name": chunk.document_name, "paragraphs_supported": 0},
            )
            entry["paragraphs_supported"] += 1

    source_documents = sorted(
        (
            SourceContribution(
                document_id=document_id,
                document_name=entry["document_name"],
                paragraphs_supported=entry["paragraphs_supported"],
                contribution_percent=round(100 * entry["paragraphs_supported"] / total),
            )
            for document_id, entry in contributions.items()
        ),
        key=lambda d: d.paragraphs_supported,
        reverse=True,
    )

    return SectionCoverage(
        section_id=section_id,
        section_name=section_name,
        coverage_score=round(100 * (grounded + 0.5 * partial) / total),
        grounded_count=grounded,
        partial_count=partial,
        ungrounded_count=ungrounded,
        total_paragraphs=total,
        source_documents=source_documents,
        computed_at=computed_at,
    )


class CitationMapper:
    """Maps stored section content to source chunks and persists coverage.

    Attributes:
        session: Database session
        retriever: Retriever used when the caller supplies no chunks
        thresholds: Attribution thresholds
    """

    def __init__(
        self,
        session: AsyncSession,
        retriever=None,
        thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
        scorer: Optional[TextSimilarityScorer] = None,
        top_k: int = 10,
    ):
        """Initialize the citation mapper.

        Args:
            session: Database session
            retriever: Graceful ``Retriever``; without one, calls that supply
                no chunks mark every paragraph FAILED
            thresholds: Attribution thresholds
            scorer: Similarity strategy
            top_k: Chunks to retrieve when fetching fresh sources
        """
        self.session = session
        self.retriever = retriever
        self.thresholds = thresholds
        self.scorer = scorer or JaccardPhraseScorer()
        self.top_k = top_k
        self.section_repo = SectionRepository(session)
        self.proposal_repo = ProposalRepository(session)
        self.paragraph_repo = AttributedParagraphRepository(session)
        self.coverage_repo = SectionCoverageRepository(session)

    async def _retrieve_for_section(self, section, organization_id: Optional[UUID]) -> List[RetrievedChunk]:
        if self.retriever is None:
            LOGGER.warning(
                "No retriever configured for attribution",
                extra={"section_id": str(section.id)}
            )
            return []
        if organization_id is None:
            proposal = await self.proposal_repo.get_by_id(section.proposal_id)
            organization_id = proposal.organization_id if proposal else None

        query = f"{section.section_name} {section.description or ''}".strip()
        return await self.retriever.retrieve(query, organization_id, self.top_k)

    async def map_citations(
        self,
        section_id: UUID,
        text: str,
        chunks: Optional[Sequence[RetrievedChunk]] = None,
        organization_id: Optional[UUID] = None,
    ) -> CitationMappingResult:
        """Attribute every paragraph of ``text`` without persisting.

        Args:
            section_id: Section the text belongs to
            text: Section content, HTML allowed
            chunks: Source chunks; fetched fresh when empty or None
            organization_id: Retrieval scope, looked up from the proposal
                when omitted

        Returns:
            CitationMappingResult with paragraphs and section coverage

        Raises:
            SectionNotFoundError: If the section does not exist
        """
        section = await self.section_repo.get_by_id(section_id)
        if not section:
            raise SectionNotFoundError(f"Section not found: {section_id}")

        paragraph_texts = split_attribution_paragraphs(text)
        computed_at = datetime.now(timezone.utc)
        if not paragraph_texts:
            return CitationMappingResult(
                paragraphs=[],
                section_coverage=compute_section_coverage(section_id, section.section_name, [], computed_at),
            )

        sources = list(chunks or [])
        if not sources:
            sources = await self._retrieve_for_section(section, organization_id)

        if sources:
            paragraphs = [
                attribute_paragraph(p, i, section_id, sources, self.scorer, self.thresholds)
                for i, p in enumerate(paragraph_texts)
            ]
        else:
            LOGGER.warning(
                "No source chunks available, marking paragraphs as failed",
                extra={"section_id": str(section_id), "paragraphs": len(paragraph_texts)}
            )
            paragraphs = [failed_paragraph(p, i, section_id) for i, p in enumerate(paragraph_texts)]

        coverage = compute_section_coverage(section_id, section.section_name, paragraphs, computed_at)
        LOGGER.info(
            "Mapped citations for section",
            extra={
                "section_id": str(section_id),
                "paragraphs": coverage.total_paragraphs,
                "coverage_score": coverage.coverage_score,
            }
        )
        return CitationMappingResult(paragraphs=paragraphs, section_coverage=coverage)

    async def map_and_persist(
        self,
        section_id: UUID,
        text: str,
        chunks: Optional[Sequence[RetrievedChunk]] = None,
        organization_id: Optional[UUID] = None,
    ) -> CitationMappingResult:
        """Attribute ``text`` and replace the section's stored attribution.

        Delete, recreate and upsert run in one transaction under the
        section's lock, so readers never see a half-replaced section.
        """
        async with section_lock(section_id):
            result = await self.map_citations(section_id, text, chunks, organization_id)
            coverage = result.section_coverage
            try:
                await self.paragraph_repo.delete_by_section(section_id)
                created = await self.paragraph_repo.bulk_create([
                    {
                        "section_id": section_id,
                        "paragraph_index": p.index,
                        "text": p.text,
                        "supporting_chunks": [c.model_dump() for c in p.supporting_chunks],
                        "attribution_score": p.attribution_score,
                        "status": p.status.value,
                        "flags": [f.value for f in p.flags],
                    }
                    for p in result.paragraphs
                ])
                await self.coverage_repo.upsert(
                    section_id,
                    coverage_score=coverage.coverage_score,
                    total_paragraphs=coverage.total_paragraphs,
                    grounded_count=coverage.grounded_count,
                    partial_count=coverage.partial_count,
                    ungrounded_count=coverage.ungrounded_count,
                    source_documents=[d.model_dump() for d in coverage.source_documents],
                    computed_at=coverage.computed_at or datetime.now(timezone.utc),
                )
                await self.session.commit()
            except SQLAlchemyError:
                await self.session.rollback()
                raise

        paragraphs = [
            p.model_copy(update={"id": row.id}) for p, row in zip(result.paragraphs, created)
        ]
        return CitationMappingResult(paragraphs=paragraphs, section_coverage=coverage)

    async def get_section_coverage(self, section_id: UUID) -> Optional[SectionCoverage]:
        record = await self.coverage_repo.get_by_section(section_id)
        if not record:
            return None
        section = await self.section_repo.get_by_id(section_id)
        return coverage_from_record(record, section.section_name if section else "")

    async def has_coverage(self, proposal_id: UUID) -> bool:
        return bool(await self.coverage_repo.get_by_proposal(proposal_id))


def coverage_from_record(record, section_name: str) -> SectionCoverage:
    """Build a SectionCoverage from a persisted coverage row."""
    return SectionCoverage(
        section_id=record.section_id,
        section_name=section_name,
        coverage_score=record.coverage_score,
        grounded_count=record.grounded_count,
        partial_count=record.partial_count,
        ungrounded_count=record.ungrounded_count,
        total_paragraphs=record.total_paragraphs,
        source_documents=[SourceContribution(**d) for d in (record.source_documents or [])],
        computed_at=record.computed_at,
    )
