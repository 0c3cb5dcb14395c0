"""Export gate API endpoints.

Each evaluation first recomputes placeholders, citations and claims from
the current section content. Every evaluation writes an audit record,
whatever the decision. The attestation endpoint stamps that record once
the user accepts the warnings of a WARN decision.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.api.v1.dependencies import get_retriever, get_thresholds
from grantguard.core.database import get_async_session as get_session
from grantguard.schemas.requests import AttestationRequest, ExportGateRequest
from grantguard.services.collaborators import Retriever
from grantguard.services.enforcement.export_gate import ExportGatekeeper
from grantguard.services.enforcement.thresholds import EnforcementThresholds
from grantguard.utils.logging import get_logger
from grantguard.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_export_gatekeeper(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    thresholds: Annotated[EnforcementThresholds, Depends(get_thresholds)],
    retriever: Annotated[Retriever, Depends(get_retriever)],
) -> ExportGatekeeper:
    """Dependency for the export gatekeeper."""
    return ExportGatekeeper(db_session, thresholds=thresholds, retriever=retriever)


@router.post(
    "/proposals/{proposal_id}/export-gate",
    response_model=dict,
    summary="Evaluate the export gate for a proposal",
    operation_id="evaluate_export_gate",
)
async def evaluate_export(
    request: Request,
    proposal_id: UUID,
    body: ExportGateRequest,
    gatekeeper: Annotated[ExportGatekeeper, Depends(get_export_gatekeeper)],
) -> dict:
    """Decide whether a proposal may be exported.

    The response carries the decision, blocking issues, warnings and the
    audit record written for this attempt. A block is a normal response,
    not an error.
    """
    evaluation = await gatekeeper.evaluate(proposal_id, body.user_id, body.export_format)
    decision = evaluation.gate_result.decision.value

    return create_api_response(
        data=evaluation,
        message=f"Export gate decision: {decision}",
        request=request
    )


@router.get(
    "/proposals/{proposal_id}/export-audits",
    response_model=dict,
    summary="List export audit records for a proposal",
    operation_id="list_export_audits",
)
async def list_export_audits(
    request: Request,
    proposal_id: UUID,
    gatekeeper: Annotated[ExportGatekeeper, Depends(get_export_gatekeeper)],
    limit: int = Query(50, ge=1, le=200, description="Maximum records to return"),
) -> dict:
    records = await gatekeeper.list_audit_records(proposal_id, limit=limit)

    return create_api_response(
        data=records,
        message=f"Retrieved {len(records)} export audit records",
        request=request
    )


@router.post(
    "/export-audits/{audit_id}/attestation",
    response_model=dict,
    summary="Record the user's attestation on an export audit record",
    operation_id="record_export_attestation",
)
async def record_attestation(
    request: Request,
    audit_id: UUID,
    body: AttestationRequest,
    gatekeeper: Annotated[ExportGatekeeper, Depends(get_export_gatekeeper)],
) -> dict:
    """Stamp the audit record with the attestation text.

    Raises:
        AuditRecordNotFoundError: Mapped to 404 when the record is missing
    """
    record = await gatekeeper.record_attestation(audit_id, body.attestation_text)

    return create_api_response(
        data=record,
        message="Attestation recorded",
        request=request
    )
