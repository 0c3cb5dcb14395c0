"""Placeholder API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.core.database import get_async_session as get_session
from grantguard.schemas.requests import ResolvePlaceholderRequest
from grantguard.services.enforcement.placeholder_service import PlaceholderService
from grantguard.utils.responses import create_api_response

router = APIRouter()


async def get_placeholder_service(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> PlaceholderService:
    """Dependency for placeholder service."""
    return PlaceholderService(db_session)


@router.post(
    "/proposals/{proposal_id}/placeholders/scan",
    response_model=dict,
    summary="Scan section content for placeholders",
    operation_id="scan_placeholders",
)
async def scan_placeholders(
    request: Request,
    proposal_id: UUID,
    service: Annotated[PlaceholderService, Depends(get_placeholder_service)],
) -> dict:
    """Detect placeholders in every section and replace the stored records."""
    summary = await service.scan_and_persist(proposal_id)

    return create_api_response(
        data=summary,
        message=f"Found {summary.total} placeholders",
        request=request
    )


@router.get(
    "/proposals/{proposal_id}/placeholders",
    response_model=dict,
    summary="Get the placeholder summary for a proposal",
    operation_id="get_placeholder_summary",
)
async def get_placeholder_summary(
    request: Request,
    proposal_id: UUID,
    service: Annotated[PlaceholderService, Depends(get_placeholder_service)],
) -> dict:
    summary = await service.get_placeholder_summary(proposal_id)

    return create_api_response(
        data=summary,
        message=f"Retrieved {summary.total} placeholders",
        request=request
    )


@router.post(
    "/placeholders/{placeholder_id}/resolve",
    response_model=dict,
    summary="Resolve a placeholder with a user-supplied value",
    operation_id="resolve_placeholder",
)
async def resolve_placeholder(
    request: Request,
    placeholder_id: UUID,
    body: ResolvePlaceholderRequest,
    service: Annotated[PlaceholderService, Depends(get_placeholder_service)],
) -> dict:
    placeholder = await service.resolve_placeholder(placeholder_id, body.value, body.user_id)

    return create_api_response(data=placeholder, message="Placeholder resolved", request=request)
