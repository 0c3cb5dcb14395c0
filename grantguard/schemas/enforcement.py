"""Enforcement schemas for grounding, coverage, claims and export gating.

Pydantic models here are the in-memory results produced by the enforcement
services and returned by the API. Persisted counterparts live in
``grantguard.database.models``.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# --------------------------------------------------------------------------- #
# Enums
# --------------------------------------------------------------------------- #

class ClaimType(str, Enum):
    """Categories of factual assertions extracted from text."""

    NUMBER = "NUMBER"
    PERCENTAGE = "PERCENTAGE"
    CURRENCY = "CURRENCY"
    DATE = "DATE"
    NAMED_ORG = "NAMED_ORG"
    NAMED_PERSON = "NAMED_PERSON"
    STAFF_NAME = "STAFF_NAME"
    OUTCOME = "OUTCOME"
    LOCATION = "LOCATION"


class RiskLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ClaimStatus(str, Enum):
    """Verification outcome for a persisted claim."""

    VERIFIED = "VERIFIED"
    UNVERIFIED = "UNVERIFIED"
    CONFLICTING = "CONFLICTING"
    OUTDATED = "OUTDATED"


class ParagraphStatus(str, Enum):
    """Generation-time grounding status of a paragraph."""

    GROUNDED = "GROUNDED"
    PARTIAL = "PARTIAL"
    UNGROUNDED = "UNGROUNDED"
    PLACEHOLDER = "PLACEHOLDER"


class AttributionStatus(str, Enum):
    """Post-hoc attribution status of a stored paragraph."""

    GROUNDED = "GROUNDED"
    PARTIAL = "PARTIAL"
    UNGROUNDED = "UNGROUNDED"
    FAILED = "FAILED"


class AttributionFlag(str, Enum):
    NO_SOURCE = "NO_SOURCE"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    CONTAINS_PLACEHOLDER = "CONTAINS_PLACEHOLDER"
    ATTRIBUTION_FAILED = "ATTRIBUTION_FAILED"


class PlaceholderType(str, Enum):
    """Placeholder kinds. The first two block export."""

    MISSING_DATA = "MISSING_DATA"
    USER_INPUT_REQUIRED = "USER_INPUT_REQUIRED"
    VERIFICATION_NEEDED = "VERIFICATION_NEEDED"


class AmbiguityType(str, Enum):
    CONTRADICTORY = "CONTRADICTORY"
    VAGUE = "VAGUE"
    IMPLICIT = "IMPLICIT"
    SCOPE_UNCLEAR = "SCOPE_UNCLEAR"


class ComplianceOverallStatus(str, Enum):
    COMPLETE = "COMPLETE"
    INCOMPLETE = "INCOMPLETE"
    VIOLATIONS = "VIOLATIONS"


class LimitType(str, Enum):
    WORD = "WORD"
    CHAR = "CHAR"


class ChecklistMappingType(str, Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class ChecklistItemStatus(str, Enum):
    COMPLETE = "COMPLETE"
    INCOMPLETE = "INCOMPLETE"
    UNMAPPED = "UNMAPPED"
    NEEDS_REVIEW = "NEEDS_REVIEW"


class ExportDecision(str, Enum):
    ALLOW = "ALLOW"
    WARN = "WARN"
    BLOCK = "BLOCK"


class RuleAction(str, Enum):
    BLOCK = "BLOCK"
    WARN = "WARN"


class WarningSeverity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ExportFormat(str, Enum):
    DOCX = "DOCX"
    PDF = "PDF"
    CLIPBOARD = "CLIPBOARD"


# --------------------------------------------------------------------------- #
# Retrieval input
# --------------------------------------------------------------------------- #

class RetrievedChunk(BaseModel):
    """Unit of source material returned by the retrieval collaborator."""

    model_config = {"frozen": True}

    content: str = Field(..., description="Chunk text")
    score: float = Field(..., ge=0.0, le=1.0, description="Retrieval similarity")
    document_id: str = Field(..., description="Source document identifier")
    filename: str = Field(default="", description="Source document filename")
    document_type: str = Field(default="OTHER", description="Knowledge-base document category")
    chunk_id: Optional[str] = Field(None, description="Chunk identifier, when the store provides one")
    document_date: Optional[datetime] = Field(None, description="Date of the source document")


# --------------------------------------------------------------------------- #
# Claims
# --------------------------------------------------------------------------- #

class ExtractedClaim(BaseModel):
    """Typed factual assertion found in text."""

    model_config = {"frozen": True}

    type: ClaimType
    value: str = Field(..., description="Matched substring")
    context: str = Field(default="", description="Surrounding text")
    start: int = Field(..., ge=0, description="Start offset in the source text")
    end: int = Field(..., ge=0, description="End offset in the source text")
    risk_level: RiskLevel


class ReplacedClaim(BaseModel):
    """Claim removed from generated text during enforcement."""

    id: str
    type: ClaimType
    original_text: str
    context: str
    position_start: int
    position_end: int
    reason: str = "Not found in knowledge base"


class ClaimEvidence(BaseModel):
    chunk_id: Optional[str] = None
    document_id: str
    document_name: str
    matched_text: str
    document_date: Optional[datetime] = None
    confidence: float = Field(..., ge=0.0, le=1.0)


class VerifiedClaim(BaseModel):
    """Claim with its knowledge-base verification outcome."""

    id: Optional[UUID] = None
    paragraph_id: Optional[UUID] = None
    type: ClaimType
    value: str
    context: str = ""
    start: int = 0
    end: int = 0
    risk_level: RiskLevel
    status: ClaimStatus
    evidence: List[ClaimEvidence] = Field(default_factory=list)
    verification_score: float = 0.0


class ClaimVerificationSummary(BaseModel):
    proposal_id: UUID
    total_claims: int = 0
    verified: int = 0
    unverified: int = 0
    conflicting: int = 0
    outdated: int = 0
    high_risk_unverified: int = 0
    verification_rate: int = Field(0, ge=0, le=100, description="Percent of claims verified")
    claims: List[VerifiedClaim] = Field(default_factory=list)


# --------------------------------------------------------------------------- #
# Generation-time enforcement
# --------------------------------------------------------------------------- #

class SupportingChunk(BaseModel):
    content: str
    similarity: float
    document_id: str
    filename: str


class EnforcedParagraph(BaseModel):
    index: int
    original_text: str
    enforced_text: str
    status: ParagraphStatus
    best_similarity: float = 0.0
    supporting_chunks: List[SupportingChunk] = Field(default_factory=list)


class GenerationEnforcementMetadata(BaseModel):
    """Audit metadata produced by every enforcement run."""

    retrieved_chunk_count: int = 0
    used_generic_knowledge: bool = False
    min_chunk_similarity: Optional[float] = None
    max_chunk_similarity: Optional[float] = None
    avg_chunk_similarity: Optional[float] = None
    enforcement_applied: bool = False
    claims_replaced: int = 0
    paragraphs_placeholdered: int = 0
    policy_override: bool = False
    blocked_patterns: List[str] = Field(default_factory=list)


class RetrievalSufficiency(BaseModel):
    proceed: bool
    reason: Optional[str] = None
    metadata: GenerationEnforcementMetadata


class EnforcementResult(BaseModel):
    enforced_text: str
    raw_text: str
    metadata: GenerationEnforcementMetadata
    paragraphs: List[EnforcedParagraph] = Field(default_factory=list)
    replaced_claims: List[ReplacedClaim] = Field(default_factory=list)


class SanitizationResult(BaseModel):
    sanitized: str
    policy_override: bool = False
    blocked_patterns: List[str] = Field(default_factory=list)


# --------------------------------------------------------------------------- #
# Attribution and coverage
# --------------------------------------------------------------------------- #

class AttributedChunk(BaseModel):
    chunk_id: Optional[str] = None
    document_id: str
    document_name: str
    similarity: float
    matched_span: str = ""


class AttributedParagraphResult(BaseModel):
    id: Optional[UUID] = None
    section_id: UUID
    index: int
    text: str
    supporting_chunks: List[AttributedChunk] = Field(default_factory=list)
    attribution_score: float = 0.0
    status: AttributionStatus
    flags: List[AttributionFlag] = Field(default_factory=list)


class SourceContribution(BaseModel):
    document_id: str
    document_name: str
    paragraphs_supported: int
    contribution_percent: int


class SectionCoverage(BaseModel):
    section_id: UUID
    section_name: str = ""
    coverage_score: int = Field(0, ge=0, le=100)
    grounded_count: int = 0
    partial_count: int = 0
    ungrounded_count: int = 0
    total_paragraphs: int = 0
    source_documents: List[SourceContribution] = Field(default_factory=list)
    computed_at: Optional[datetime] = None


class CitationMappingResult(BaseModel):
    paragraphs: List[AttributedParagraphResult] = Field(default_factory=list)
    section_coverage: SectionCoverage


class LowestSection(BaseModel):
    name: str
    score: int


class ProposalCoverage(BaseModel):
    proposal_id: UUID
    overall_score: int = Field(0, ge=0, le=100)
    section_scores: List[SectionCoverage] = Field(default_factory=list)
    lowest_section: Optional[LowestSection] = None
    documents_used: int = 0
    total_paragraphs: int = 0
    grounded_paragraphs: int = 0
    computed_at: Optional[datetime] = None


# --------------------------------------------------------------------------- #
# Placeholders
# --------------------------------------------------------------------------- #

class PlaceholderPosition(BaseModel):
    start: int
    end: int


class Placeholder(BaseModel):
    id: str = Field(..., description="Token id embedded in the placeholder text")
    record_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    type: PlaceholderType
    description: str
    suggested_sources: List[str] = Field(default_factory=list)
    position: PlaceholderPosition
    resolved: bool = False
    resolved_value: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None


class PlaceholderSummary(BaseModel):
    total: int = 0
    resolved: int = 0
    unresolved: int = 0
    by_type: Dict[str, int] = Field(
        default_factory=lambda: {t.value: 0 for t in PlaceholderType},
        description="Unresolved placeholder counts per type",
    )
    placeholders: List[Placeholder] = Field(default_factory=list)


# --------------------------------------------------------------------------- #
# Ambiguities
# --------------------------------------------------------------------------- #

class AmbiguityFlag(BaseModel):
    id: Optional[UUID] = None
    proposal_id: Optional[UUID] = None
    type: AmbiguityType
    description: str
    source_texts: List[str] = Field(default_factory=list)
    suggested_resolutions: List[str] = Field(default_factory=list)
    requires_user_input: bool = False
    resolved: bool = False
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None


class AmbiguitySummary(BaseModel):
    proposal_id: UUID
    total: int = 0
    unresolved: int = 0
    requires_input: int = 0
    ambiguities: List[AmbiguityFlag] = Field(default_factory=list)


# --------------------------------------------------------------------------- #
# Compliance
# --------------------------------------------------------------------------- #

class SectionStatus(BaseModel):
    section_id: UUID
    section_name: str
    is_required: bool
    is_complete: bool
    word_count: int
    char_count: int
    word_limit: Optional[int] = None
    char_limit: Optional[int] = None


class LimitViolation(BaseModel):
    section_id: UUID
    section_name: str
    limit_type: LimitType
    limit: int
    actual: int
    overage_percent: int


class ComplianceStatus(BaseModel):
    proposal_id: UUID
    overall_status: ComplianceOverallStatus
    required_sections: List[SectionStatus] = Field(default_factory=list)
    missing_sections: List[str] = Field(default_factory=list)
    empty_sections: List[str] = Field(default_factory=list)
    limit_violations: List[LimitViolation] = Field(default_factory=list)
    compliance_score: int = Field(0, ge=0, le=100)
    checked_at: Optional[datetime] = None


# --------------------------------------------------------------------------- #
# Checklist
# --------------------------------------------------------------------------- #

class ChecklistMapping(BaseModel):
    checklist_item_id: UUID
    section_id: UUID
    confidence: Optional[float] = None
    mapping_type: ChecklistMappingType


class LowConfidenceMapping(BaseModel):
    item_name: str
    section_name: str
    confidence: float


class ChecklistValidation(BaseModel):
    valid: bool
    missing_required: List[str] = Field(default_factory=list)
    unmapped_items: List[str] = Field(default_factory=list)
    low_confidence_mappings: List[LowConfidenceMapping] = Field(default_factory=list)


class MappedSection(BaseModel):
    id: UUID
    name: str
    has_content: bool
    confidence: Optional[float] = None


class ChecklistItemState(BaseModel):
    id: UUID
    name: str
    is_required: bool
    status: ChecklistItemStatus
    mapped_sections: List[MappedSection] = Field(default_factory=list)


class ChecklistCounts(BaseModel):
    total: int = 0
    complete: int = 0
    incomplete: int = 0
    needs_review: int = 0


class ChecklistStatus(BaseModel):
    proposal_id: UUID
    items: List[ChecklistItemState] = Field(default_factory=list)
    summary: ChecklistCounts = Field(default_factory=ChecklistCounts)


# --------------------------------------------------------------------------- #
# Export gate
# --------------------------------------------------------------------------- #

class ExportBlock(BaseModel):
    rule_id: str
    ac: str
    reason: str
    affected_items: List[str] = Field(default_factory=list)
    resolution: str


class ExportWarning(BaseModel):
    rule_id: str
    ac: str
    severity: WarningSeverity
    message: str
    affected_items: List[str] = Field(default_factory=list)


class ExportGateResult(BaseModel):
    model_config = {"frozen": True}

    allowed: bool
    decision: ExportDecision
    blocks: List[ExportBlock] = Field(default_factory=list)
    warnings: List[ExportWarning] = Field(default_factory=list)
    attestation_required: bool = False
    attestation_text: Optional[str] = None


class EnforcementSnapshot(BaseModel):
    coverage_score: Optional[int] = None
    verification_rate: Optional[int] = None
    compliance_score: Optional[int] = None
    voice_score: Optional[int] = None


class ExportAuditRecord(BaseModel):
    id: UUID
    proposal_id: UUID
    user_id: str
    export_format: ExportFormat
    decision: ExportDecision
    blocks: List[ExportBlock] = Field(default_factory=list)
    warnings: List[ExportWarning] = Field(default_factory=list)
    enforcement_snapshot: EnforcementSnapshot
    attestation_text: Optional[str] = None
    attestation_timestamp: Optional[datetime] = None
    created_at: datetime


class ExportEvaluation(BaseModel):
    gate_result: ExportGateResult
    audit_record: ExportAuditRecord


class EnforcementData(BaseModel):
    """Everything the export rules read, gathered in one pass."""

    coverage: Optional[ProposalCoverage] = None
    claims: Optional[ClaimVerificationSummary] = None
    compliance: Optional[ComplianceStatus] = None
    placeholders: Optional[PlaceholderSummary] = None
    ambiguities: Optional[AmbiguitySummary] = None
    enforcement_failure: bool = False
    has_generated_content: bool = False
    sections_with_generic_knowledge: List[str] = Field(default_factory=list)
