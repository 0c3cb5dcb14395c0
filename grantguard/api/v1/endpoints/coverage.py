"""Citation mapping and coverage API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.api.v1.dependencies import get_retriever, get_thresholds
from grantguard.core.config import settings
from grantguard.core.database import get_async_session as get_session
from grantguard.core.exceptions import SectionNotFoundError
from grantguard.repositories.proposal_repository import SectionRepository
from grantguard.schemas.requests import CitationMappingRequest
from grantguard.services.collaborators import Retriever
from grantguard.services.enforcement.citation_mapper import CitationMapper
from grantguard.services.enforcement.coverage_scorer import CoverageScorer
from grantguard.services.enforcement.thresholds import EnforcementThresholds
from grantguard.utils.logging import get_logger
from grantguard.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_citation_mapper(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    retriever: Annotated[Retriever, Depends(get_retriever)],
    thresholds: Annotated[EnforcementThresholds, Depends(get_thresholds)],
) -> CitationMapper:
    """Dependency for citation mapper."""
    return CitationMapper(
        db_session,
        retriever=retriever,
        thresholds=thresholds,
        top_k=settings.retrieval.citation_top_k,
    )


async def get_coverage_scorer(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    retriever: Annotated[Retriever, Depends(get_retriever)],
    thresholds: Annotated[EnforcementThresholds, Depends(get_thresholds)],
) -> CoverageScorer:
    """Dependency for coverage scorer."""
    return CoverageScorer(
        db_session,
        retriever=retriever,
        thresholds=thresholds,
        top_k=settings.retrieval.citation_top_k,
    )


@router.post(
    "/sections/{section_id}/citations",
    response_model=dict,
    summary="Map citations for a section and store its coverage",
    operation_id="map_section_citations",
)
async def map_section_citations(
    request: Request,
    section_id: UUID,
    body: CitationMappingRequest,
    db_session: Annotated[AsyncSession, Depends(get_session)],
    mapper: Annotated[CitationMapper, Depends(get_citation_mapper)],
) -> dict:
    """Attribute each paragraph to source chunks and replace stored results.

    Without ``content`` in the body, the section's stored content is used.
    """
    content = body.content
    if content is None:
        section = await SectionRepository(db_session).get_by_id(section_id)
        if section is None:
            raise SectionNotFoundError(f"Section not found: {section_id}")
        content = section.content or ""

    result = await mapper.map_and_persist(section_id, content, chunks=body.chunks)

    return create_api_response(
        data=result,
        message=f"Mapped {result.section_coverage.total_paragraphs} paragraphs",
        request=request
    )


@router.get(
    "/proposals/{proposal_id}/coverage",
    response_model=dict,
    summary="Get aggregated coverage for a proposal",
    operation_id="get_proposal_coverage",
)
async def get_proposal_coverage(
    request: Request,
    proposal_id: UUID,
    scorer: Annotated[CoverageScorer, Depends(get_coverage_scorer)],
) -> dict:
    coverage = await scorer.compute_proposal_coverage(proposal_id)
    message = "Coverage retrieved successfully" if coverage else "No coverage computed yet"

    return create_api_response(data=coverage, message=message, request=request)


@router.post(
    "/proposals/{proposal_id}/coverage/recompute",
    response_model=dict,
    summary="Re-attribute every section and recompute coverage",
    operation_id="recompute_proposal_coverage",
)
async def recompute_proposal_coverage(
    request: Request,
    proposal_id: UUID,
    scorer: Annotated[CoverageScorer, Depends(get_coverage_scorer)],
) -> dict:
    """Recompute coverage for all non-empty sections concurrently."""
    coverage = await scorer.recompute_all_sections(proposal_id)
    message = "Coverage recomputed" if coverage else "No sections with content to score"

    return create_api_response(data=coverage, message=message, request=request)
