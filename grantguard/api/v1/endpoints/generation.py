"""Section generation and instruction sanitization endpoints."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.api.v1.dependencies import get_completer, get_retriever, get_thresholds
from grantguard.core.config import settings
from grantguard.core.database import get_async_session as get_session
from grantguard.schemas.requests import GenerateSectionRequest, SanitizeInstructionsRequest
from grantguard.services.collaborators import ChatCompleter, Retriever
from grantguard.services.enforcement.instruction_sanitizer import sanitize_custom_instructions
from grantguard.services.enforcement.thresholds import EnforcementThresholds
from grantguard.services.generation import GenerationService
from grantguard.utils.logging import get_logger
from grantguard.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_generation_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    retriever: Annotated[Retriever, Depends(get_retriever)],
    completer: Annotated[Optional[ChatCompleter], Depends(get_completer)],
    thresholds: Annotated[EnforcementThresholds, Depends(get_thresholds)],
) -> GenerationService:
    """Dependency for generation service."""
    return GenerationService(
        db_session,
        retriever=retriever,
        completer=completer,
        thresholds=thresholds,
        top_k=settings.retrieval.generation_top_k,
    )


@router.post(
    "/sections/{section_id}/generate",
    response_model=dict,
    summary="Draft a section with enforcement",
    operation_id="generate_section",
)
async def generate_section(
    request: Request,
    section_id: UUID,
    body: GenerateSectionRequest,
    service: Annotated[GenerationService, Depends(get_generation_service)],
) -> dict:
    """Draft a section from knowledge-base sources.

    The response is only produced once enforcement metadata is stored.
    A refusal for lack of sources is a successful response with
    ``refused`` set and the empty knowledge-base marker as content.

    Raises:
        SectionNotFoundError: Mapped to 404
        APIClientError: Mapped to 502 when the LLM is unavailable
        EnforcementError: Mapped to 500; the proposal is flagged
    """
    result = await service.generate_section_draft(
        section_id,
        custom_instructions=body.custom_instructions,
        existing_content=body.existing_content,
    )
    message = "Generation refused: no relevant sources" if result.refused else "Section drafted"

    return create_api_response(data=result, message=message, request=request)


@router.post(
    "/instructions/sanitize",
    response_model=dict,
    summary="Strip enforcement-bypass phrases from custom instructions",
    operation_id="sanitize_instructions",
)
async def sanitize_instructions(request: Request, body: SanitizeInstructionsRequest) -> dict:
    result = sanitize_custom_instructions(body.text)
    message = "Bypass attempt removed" if result.policy_override else "Instructions accepted"

    return create_api_response(data=result, message=message, request=request)
