"""Schemas for section drafting."""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from grantguard.schemas.enforcement import (
    EnforcedParagraph,
    GenerationEnforcementMetadata,
    ReplacedClaim,
)


class SectionDraftResult(BaseModel):
    """Outcome of drafting one section.

    ``content`` is what the caller may show: the enforced draft, or the
    empty knowledge-base marker when generation was refused.
    """

    section_id: UUID
    content: str = Field(..., description="Enforced draft or empty-KB marker")
    saved_content: str = Field(..., description="Content written to the section")
    refused: bool = Field(False, description="True when retrieval was insufficient and the LLM was not called")
    refusal_reason: Optional[str] = None
    metadata: GenerationEnforcementMetadata
    paragraphs: List[EnforcedParagraph] = Field(default_factory=list)
    replaced_claims: List[ReplacedClaim] = Field(default_factory=list)
