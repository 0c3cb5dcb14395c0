"""RFP ambiguity, compliance and checklist API endpoints."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.api.v1.dependencies import get_enhancer_completer, get_thresholds
from grantguard.core.database import get_async_session as get_session
from grantguard.core.exceptions import ProposalNotFoundError, ValidationError
from grantguard.repositories.proposal_repository import ProposalRepository
from grantguard.schemas.requests import (
    AmbiguityAnalysisRequest,
    CreateChecklistRequest,
    ManualChecklistMappingRequest,
    ResolveAmbiguityRequest,
)
from grantguard.services.collaborators import ChatCompleter
from grantguard.services.enforcement.ambiguity_detector import AmbiguityDetector
from grantguard.services.enforcement.checklist_mapper import ChecklistMapper
from grantguard.services.enforcement.compliance_checker import ComplianceChecker
from grantguard.services.enforcement.thresholds import EnforcementThresholds
from grantguard.utils.logging import get_logger
from grantguard.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_ambiguity_detector(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    completer: Annotated[Optional[ChatCompleter], Depends(get_enhancer_completer)],
) -> AmbiguityDetector:
    """Dependency for ambiguity detector."""
    return AmbiguityDetector(db_session, completer=completer)


async def get_compliance_checker(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    thresholds: Annotated[EnforcementThresholds, Depends(get_thresholds)],
) -> ComplianceChecker:
    """Dependency for compliance checker."""
    return ComplianceChecker(db_session, thresholds=thresholds)


async def get_checklist_mapper(
    db_session: Annotated[AsyncSession, Depends(get_session)],
) -> ChecklistMapper:
    """Dependency for checklist mapper."""
    return ChecklistMapper(db_session)


@router.post(
    "/proposals/{proposal_id}/ambiguities",
    response_model=dict,
    summary="Detect ambiguities in a proposal's RFP",
    operation_id="analyze_rfp_ambiguities",
)
async def analyze_ambiguities(
    request: Request,
    proposal_id: UUID,
    body: AmbiguityAnalysisRequest,
    db_session: Annotated[AsyncSession, Depends(get_session)],
    detector: Annotated[AmbiguityDetector, Depends(get_ambiguity_detector)],
) -> dict:
    """Replace the proposal's ambiguity flags with a fresh analysis.

    Without ``rfp_text`` in the body, the RFP stored on the proposal is used.

    Raises:
        ProposalNotFoundError: Mapped to 404
        ValidationError: Mapped to 422 when no RFP text is available
    """
    proposal = await ProposalRepository(db_session).get_by_id(proposal_id)
    if proposal is None:
        raise ProposalNotFoundError(f"Proposal not found: {proposal_id}")

    rfp_text = body.rfp_text or proposal.rfp_text
    if not rfp_text or not rfp_text.strip():
        raise ValidationError(f"No RFP text available for proposal {proposal_id}")

    summary = await detector.analyze_and_persist(proposal_id, rfp_text)

    return create_api_response(
        data=summary,
        message=f"Found {summary.total} ambiguities",
        request=request
    )


@router.get(
    "/proposals/{proposal_id}/ambiguities",
    response_model=dict,
    summary="Get stored ambiguity flags for a proposal",
    operation_id="get_rfp_ambiguities",
)
async def get_ambiguities(
    request: Request,
    proposal_id: UUID,
    detector: Annotated[AmbiguityDetector, Depends(get_ambiguity_detector)],
) -> dict:
    summary = await detector.get_ambiguity_summary(proposal_id)

    return create_api_response(
        data=summary,
        message=f"Retrieved {summary.total} ambiguities",
        request=request
    )


@router.post(
    "/ambiguities/{ambiguity_id}/resolve",
    response_model=dict,
    summary="Resolve an ambiguity flag",
    operation_id="resolve_ambiguity",
)
async def resolve_ambiguity(
    request: Request,
    ambiguity_id: UUID,
    body: ResolveAmbiguityRequest,
    detector: Annotated[AmbiguityDetector, Depends(get_ambiguity_detector)],
) -> dict:
    flag = await detector.resolve_ambiguity(ambiguity_id, body.resolution, body.user_id)

    return create_api_response(data=flag, message="Ambiguity resolved", request=request)


@router.get(
    "/proposals/{proposal_id}/compliance",
    response_model=dict,
    summary="Check a proposal against its RFP requirements",
    operation_id="check_proposal_compliance",
)
async def check_compliance(
    request: Request,
    proposal_id: UUID,
    checker: Annotated[ComplianceChecker, Depends(get_compliance_checker)],
) -> dict:
    status = await checker.check_compliance(proposal_id)
    message = f"Compliance status: {status.overall_status.value}"

    return create_api_response(data=status, message=message, request=request)


@router.post(
    "/proposals/{proposal_id}/checklist",
    response_model=dict,
    summary="Replace a proposal's RFP checklist",
    operation_id="create_proposal_checklist",
)
async def create_checklist(
    request: Request,
    proposal_id: UUID,
    body: CreateChecklistRequest,
    mapper: Annotated[ChecklistMapper, Depends(get_checklist_mapper)],
) -> dict:
    """Store checklist items in RFP order.

    Without ``items`` in the body, one item is created per section of the
    proposal's parsed RFP requirements.
    """
    status = await mapper.create_checklist(proposal_id, body.items)

    return create_api_response(
        data=status,
        message=f"Created {status.summary.total} checklist items",
        request=request
    )


@router.post(
    "/proposals/{proposal_id}/checklist/auto-map",
    response_model=dict,
    summary="Map checklist items to sections by name",
    operation_id="auto_map_proposal_checklist",
)
async def auto_map_checklist(
    request: Request,
    proposal_id: UUID,
    mapper: Annotated[ChecklistMapper, Depends(get_checklist_mapper)],
) -> dict:
    mappings = await mapper.auto_map_sections(proposal_id)

    return create_api_response(
        data=mappings,
        message=f"Auto-mapped {len(mappings)} checklist items",
        request=request
    )


@router.put(
    "/checklist-items/{checklist_item_id}/mapping",
    response_model=dict,
    summary="Map a checklist item to a section manually",
    operation_id="map_checklist_item",
)
async def map_checklist_item(
    request: Request,
    checklist_item_id: UUID,
    body: ManualChecklistMappingRequest,
    mapper: Annotated[ChecklistMapper, Depends(get_checklist_mapper)],
) -> dict:
    mapping = await mapper.map_section_manually(checklist_item_id, body.section_id)

    return create_api_response(data=mapping, message="Checklist item mapped", request=request)


@router.get(
    "/proposals/{proposal_id}/checklist",
    response_model=dict,
    summary="Get checklist item statuses for a proposal",
    operation_id="get_proposal_checklist",
)
async def get_checklist(
    request: Request,
    proposal_id: UUID,
    mapper: Annotated[ChecklistMapper, Depends(get_checklist_mapper)],
) -> dict:
    status = await mapper.get_checklist_status(proposal_id)
    message = f"{status.summary.complete} of {status.summary.total} checklist items complete"

    return create_api_response(data=status, message=message, request=request)


@router.get(
    "/proposals/{proposal_id}/checklist/validation",
    response_model=dict,
    summary="Check that every required checklist item is answered",
    operation_id="validate_proposal_checklist",
)
async def validate_checklist(
    request: Request,
    proposal_id: UUID,
    mapper: Annotated[ChecklistMapper, Depends(get_checklist_mapper)],
) -> dict:
    validation = await mapper.validate_checklist_completion(proposal_id)
    message = "Checklist complete" if validation.valid else "Checklist has missing required items"

    return create_api_response(data=validation, message=message, request=request)
