"""SQLAlchemy models for proposals and enforcement records."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grantguard.core.database import Base


class Proposal(Base):
    """Grant proposal owned by an organization."""

    __tablename__ = "proposals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    funder_name: Mapped[str | None] = mapped_column(String, nullable=True)
    rfp_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    parsed_requirements: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True,
        comment="Parsed RFP requirements: {sections: [{name, is_required}]}"
    )
    enforcement_failure: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
        comment="Set when generation-time enforcement raised for any section"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )

    sections: Mapped[list["ProposalSection"]] = relationship(
        "ProposalSection", back_populates="proposal", cascade="all, delete-orphan",
        order_by="ProposalSection.order_index",
    )


class ProposalSection(Base):
    """One section of a proposal with its current HTML content."""

    __tablename__ = "proposal_sections"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    proposal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    section_name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    word_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    char_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Generation-time enforcement flags
    used_generic_knowledge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    retrieved_chunk_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    enforcement_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )

    proposal: Mapped["Proposal"] = relationship("Proposal", back_populates="sections")


class GenerationMetadata(Base):
    """Audit row written for every enforced generation."""

    __tablename__ = "generation_metadata"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    section_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposal_sections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    retrieved_chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    used_generic_knowledge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    min_chunk_similarity: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_chunk_similarity: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_chunk_similarity: Mapped[float | None] = mapped_column(Float, nullable=True)
    enforcement_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claims_replaced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paragraphs_placeholdered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    policy_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blocked_patterns: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    raw_generation: Mapped[str | None] = mapped_column(Text, nullable=True)
    enforced_generation: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


class AttributedParagraph(Base):
    """Paragraph of stored section content attributed to source chunks."""

    __tablename__ = "attributed_paragraphs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    section_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposal_sections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    paragraph_index: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    supporting_chunks: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list,
        comment="[{chunk_id, document_id, document_name, similarity, matched_span}]"
    )
    attribution_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # GROUNDED | PARTIAL | UNGROUNDED | FAILED
    flags: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


class SectionCoverageRecord(Base):
    """Latest coverage computation for a section."""

    __tablename__ = "section_coverage_records"
    __table_args__ = (UniqueConstraint("section_id", name="uq_section_coverage_section"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    section_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposal_sections.id", ondelete="CASCADE"), nullable=False
    )
    coverage_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_paragraphs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    grounded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    partial_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ungrounded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_documents: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list,
        comment="[{document_id, document_name, paragraphs_supported, contribution_percent}]"
    )
    computed_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)


class VerifiedClaimRecord(Base):
    """Claim found in an attributed paragraph with its verification outcome."""

    __tablename__ = "verified_claims"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    paragraph_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attributed_paragraphs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    section_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposal_sections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    claim_type: Mapped[str] = mapped_column(String(30), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[str] = mapped_column(Text, nullable=False, default="")
    position_start: Mapped[int] = mapped_column(Integer, nullable=False)
    position_end: Mapped[int] = mapped_column(Integer, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    verification_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    evidence: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


class PlaceholderRecord(Base):
    """Placeholder token found in section content."""

    __tablename__ = "placeholders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    section_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposal_sections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_id: Mapped[str] = mapped_column(String(100), nullable=False)
    placeholder_type: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    suggested_sources: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    position_start: Mapped[int] = mapped_column(Integer, nullable=False)
    position_end: Mapped[int] = mapped_column(Integer, nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)


class AmbiguityFlagRecord(Base):
    """Ambiguity detected in a proposal's RFP text."""

    __tablename__ = "ambiguity_flags"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    proposal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ambiguity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    source_texts: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    suggested_resolutions: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    requires_user_input: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


class ExportAuditLog(Base):
    """Append-only record of every export gate evaluation."""

    __tablename__ = "export_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    proposal_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    export_format: Mapped[str] = mapped_column(String(20), nullable=False)
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    blocks: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    warnings: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    enforcement_snapshot: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    attestation_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    attestation_timestamp: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )


class ChecklistItem(Base):
    """Requirement from an RFP checklist that a proposal section must answer."""

    __tablename__ = "checklist_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    proposal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    word_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    char_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    page_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    point_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parser_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


class ChecklistSectionMapping(Base):
    """Link between a checklist item and the section that answers it."""

    __tablename__ = "checklist_section_mappings"
    __table_args__ = (
        UniqueConstraint("checklist_item_id", "section_id", name="uq_checklist_mapping_item_section"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    checklist_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("checklist_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    section_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposal_sections.id", ondelete="CASCADE"), nullable=False
    )
    mapping_type: Mapped[str] = mapped_column(String(10), nullable=False)  # AUTO | MANUAL
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
