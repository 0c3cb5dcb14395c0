"""Claim verification API endpoints."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.api.v1.dependencies import get_enhancer_completer, get_retriever, get_thresholds
from grantguard.core.config import settings
from grantguard.core.database import get_async_session as get_session
from grantguard.schemas.requests import ClaimVerificationRequest
from grantguard.services.collaborators import ChatCompleter, Retriever
from grantguard.services.enforcement.claim_verifier import ClaimVerifier
from grantguard.services.enforcement.thresholds import EnforcementThresholds
from grantguard.utils.responses import create_api_response

router = APIRouter()


async def get_claim_verifier(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    retriever: Annotated[Retriever, Depends(get_retriever)],
    completer: Annotated[Optional[ChatCompleter], Depends(get_enhancer_completer)],
    thresholds: Annotated[EnforcementThresholds, Depends(get_thresholds)],
) -> ClaimVerifier:
    """Dependency for claim verifier."""
    return ClaimVerifier(
        db_session,
        retriever=retriever,
        completer=completer,
        thresholds=thresholds,
        top_k=settings.retrieval.claim_top_k,
    )


@router.post(
    "/proposals/{proposal_id}/claims/verify",
    response_model=dict,
    summary="Extract and verify claims across a proposal",
    operation_id="verify_proposal_claims",
)
async def verify_proposal_claims(
    request: Request,
    proposal_id: UUID,
    body: ClaimVerificationRequest,
    verifier: Annotated[ClaimVerifier, Depends(get_claim_verifier)],
) -> dict:
    """Verify claims found in the proposal's attributed paragraphs.

    Paragraphs come from the last citation mapping, so map citations first.
    """
    summary = await verifier.extract_and_verify_proposal(proposal_id, body.organization_id)

    return create_api_response(
        data=summary,
        message=f"Verified {summary.total_claims} claims",
        request=request
    )


@router.get(
    "/proposals/{proposal_id}/claims/summary",
    response_model=dict,
    summary="Get the stored claim verification summary",
    operation_id="get_claim_summary",
)
async def get_claim_summary(
    request: Request,
    proposal_id: UUID,
    verifier: Annotated[ClaimVerifier, Depends(get_claim_verifier)],
) -> dict:
    summary = await verifier.get_verification_summary(proposal_id)
    message = "Claim summary retrieved successfully" if summary else "No claims verified yet"

    return create_api_response(data=summary, message=message, request=request)
