"""Request bodies for the enforcement API."""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from grantguard.schemas.enforcement import ExportFormat, RetrievedChunk


class ExportGateRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="User requesting the export")
    export_format: ExportFormat = Field(ExportFormat.DOCX, description="Requested export format")


class AttestationRequest(BaseModel):
    attestation_text: str = Field(..., min_length=1, description="Attestation the user agreed to")


class CitationMappingRequest(BaseModel):
    """Map citations for a section.

    Content defaults to the stored section content; chunks default to a
    fresh retrieval.
    """
    content: Optional[str] = None
    chunks: Optional[List[RetrievedChunk]] = None


class ClaimVerificationRequest(BaseModel):
    organization_id: Optional[UUID] = None


class AmbiguityAnalysisRequest(BaseModel):
    rfp_text: Optional[str] = Field(None, description="RFP text; defaults to the proposal's stored RFP")


class ResolveAmbiguityRequest(BaseModel):
    resolution: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class ResolvePlaceholderRequest(BaseModel):
    value: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class GenerateSectionRequest(BaseModel):
    custom_instructions: Optional[str] = None
    existing_content: Optional[str] = None


class SanitizeInstructionsRequest(BaseModel):
    text: Optional[str] = None


class ChecklistItemInput(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    is_required: bool = True
    word_limit: Optional[int] = Field(None, gt=0)
    char_limit: Optional[int] = Field(None, gt=0)
    page_limit: Optional[int] = Field(None, gt=0)
    point_value: Optional[int] = Field(None, ge=0)
    parser_confidence: Optional[float] = Field(None, ge=0, le=1)


class CreateChecklistRequest(BaseModel):
    """Replace a proposal's checklist.

    Without ``items``, the checklist is built from the proposal's parsed RFP
    requirements.
    """
    items: Optional[List[ChecklistItemInput]] = None


class ManualChecklistMappingRequest(BaseModel):
    section_id: UUID
