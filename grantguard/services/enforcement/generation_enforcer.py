"""Generation-time enforcement: claim replacement then paragraph grounding.

The pure functions here are deterministic in (text, chunks, thresholds):
placeholder ids are content hashes, so re-running enforcement on unchanged
input yields byte-identical output. ``GenerationEnforcer`` adds the
persistence step that must happen before enforced content is returned.
"""

from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.repositories.generation_metadata_repository import GenerationMetadataRepository
from grantguard.repositories.proposal_repository import SectionRepository
from grantguard.schemas.enforcement import (
    EnforcementResult,
    GenerationEnforcementMetadata,
    ParagraphStatus,
    PlaceholderType,
    ReplacedClaim,
    RetrievalSufficiency,
    RetrievedChunk,
)
from grantguard.services.enforcement.claim_extractor import ClaimExtractor
from grantguard.services.enforcement.evidence_matcher import EvidenceMatcher
from grantguard.services.enforcement.paragraph_grounding import enforce_paragraph_grounding
from grantguard.services.enforcement.placeholders import create_placeholder, make_placeholder_id
from grantguard.services.enforcement.similarity import FastJaccardScorer, TextSimilarityScorer
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)

EMPTY_KB_MARKER_TEMPLATE = "[[EMPTY_KB:{section_name}]]"


def empty_kb_marker(section_name: str) -> str:
    """Refusal marker returned instead of generated prose for an empty KB."""
    return EMPTY_KB_MARKER_TEMPLATE.format(section_name=section_name.replace("]", ")"))


def _similarity_stats(chunks: Sequence[RetrievedChunk]) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    scores = [c.score for c in chunks]
    if not scores:
        return None, None, None
    return min(scores), max(scores), sum(scores) / len(scores)


def check_retrieval_sufficiency(
    chunks: Sequence[RetrievedChunk],
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> RetrievalSufficiency:
    """Decide whether enough relevant sources exist to generate at all.

    Args:
        chunks: Chunks returned by retrieval
        thresholds: Supplies the relevance score and minimum chunk count

    Returns:
        RetrievalSufficiency; ``proceed`` is False when generation must be
        refused in favour of placeholder-only content
    """
    relevant = [c for c in chunks if c.score >= thresholds.min_chunk_similarity]
    min_sim, max_sim, avg_sim = _similarity_stats(chunks)
    insufficient = len(relevant) < thresholds.min_chunks_for_generation

    metadata = GenerationEnforcementMetadata(
        retrieved_chunk_count=len(relevant),
        used_generic_knowledge=insufficient,
        min_chunk_similarity=min_sim,
        max_chunk_similarity=max_sim,
        avg_chunk_similarity=avg_sim,
    )

    if insufficient:
        return RetrievalSufficiency(
            proceed=False,
            reason=(
                f"No supporting sources found in knowledge base ({len(chunks)} chunks retrieved, "
                f"{len(relevant)} above threshold {thresholds.min_chunk_similarity})"
            ),
            metadata=metadata,
        )
    return RetrievalSufficiency(proceed=True, metadata=metadata)


def generate_placeholder_only_content(section_name: str, description: Optional[str] = None) -> str:
    """Content made only of placeholders, for sections with no KB support."""
    base_id = make_placeholder_id("gen", section_name, description or "")
    parts = [
        create_placeholder(
            PlaceholderType.MISSING_DATA,
            f'No supporting sources found for "{section_name}". Please upload relevant documents '
            "to your knowledge base or provide this content manually.",
            base_id,
        )
    ]
    if description:
        parts.append(f"Section requirement: {description.strip()}")
    parts.append(
        create_placeholder(
            PlaceholderType.USER_INPUT_REQUIRED,
            f"Draft content for {section_name} based on your organization's actual data",
            f"{base_id}_content",
        )
    )
    return "\n\n".join(parts)


def enforce_claim_verification(
    text: str,
    chunks: Sequence[RetrievedChunk],
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
    extractor: Optional[ClaimExtractor] = None,
) -> Tuple[str, List[ReplacedClaim]]:
    """Replace every unsupported claim with a VERIFICATION_NEEDED placeholder.

    Claims are processed in descending start order so earlier offsets stay
    valid. A claim overlapping a span already replaced is skipped, since
    its text is gone.

    Returns:
        Tuple of (claim-enforced text, replaced claims)
    """
    extractor = extractor or ClaimExtractor(context_chars=thresholds.context_window)
    matcher = EvidenceMatcher(thresholds)
    enforced = text
    replaced: List[ReplacedClaim] = []
    replaced_from = len(text) + 1

    for claim in extractor.extract_claims(text):
        if claim.end > replaced_from:
            continue
        if matcher.is_supported(claim, chunks, source_text=text):
            continue

        claim_id = make_placeholder_id("claim", claim.type.value, claim.start, claim.value)
        token = create_placeholder(
            PlaceholderType.VERIFICATION_NEEDED,
            f'Unverified {claim.type.value.lower()} removed - please verify "{claim.value}"',
            claim_id,
        )
        enforced = enforced[:claim.start] + token + enforced[claim.end:]
        replaced_from = claim.start
        replaced.append(ReplacedClaim(
            id=claim_id,
            type=claim.type,
            original_text=claim.value,
            context=claim.context,
            position_start=claim.start,
            position_end=claim.end,
        ))

    return enforced, replaced


def enforce_generation(
    raw_text: str,
    chunks: Sequence[RetrievedChunk],
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
    scorer: Optional[TextSimilarityScorer] = None,
) -> EnforcementResult:
    """Run claim enforcement, then paragraph grounding, on raw LLM output.

    Claim offsets are computed against the raw text. Grounding then runs on
    the claim-enforced text, so an ungrounded paragraph replaces any claim
    placeholders inside it.

    Args:
        raw_text: Raw generated text
        chunks: Chunks the generation was conditioned on
        thresholds: Enforcement thresholds
        scorer: Paragraph similarity strategy, fast Jaccard by default

    Returns:
        EnforcementResult with enforced text and audit metadata
    """
    claim_enforced, replaced_claims = enforce_claim_verification(raw_text, chunks, thresholds)
    paragraphs = enforce_paragraph_grounding(
        claim_enforced, chunks, scorer or FastJaccardScorer(), thresholds
    )
    enforced_text = "\n\n".join(p.enforced_text for p in paragraphs)

    sufficiency = check_retrieval_sufficiency(chunks, thresholds)
    metadata = sufficiency.metadata.model_copy(update={
        "enforcement_applied": True,
        "claims_replaced": len(replaced_claims),
        "paragraphs_placeholdered": sum(1 for p in paragraphs if p.status == ParagraphStatus.UNGROUNDED),
    })

    return EnforcementResult(
        enforced_text=enforced_text,
        raw_text=raw_text,
        metadata=metadata,
        paragraphs=paragraphs,
        replaced_claims=replaced_claims,
    )


class GenerationEnforcer:
    """Enforces generated content and records the audit metadata.

    Attributes:
        session: Database session
        thresholds: Enforcement thresholds
    """

    def __init__(self, session: AsyncSession, thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS):
        self.session = session
        self.thresholds = thresholds
        self.metadata_repo = GenerationMetadataRepository(session)
        self.section_repo = SectionRepository(session)

    async def enforce_and_persist(
        self,
        raw_text: str,
        chunks: Sequence[RetrievedChunk],
        section_id: UUID,
        organization_id: Optional[UUID] = None,
        policy_override: bool = False,
        blocked_patterns: Optional[List[str]] = None,
    ) -> EnforcementResult:
        """Enforce ``raw_text`` and persist metadata before returning.

        Metadata persistence is best-effort: a failure is logged and the
        enforced result is still returned. The raw text is only stored in
        the audit row, never returned as content.
        """
        result = enforce_generation(raw_text, chunks, self.thresholds)
        result.metadata.policy_override = policy_override
        result.metadata.blocked_patterns = list(blocked_patterns or [])

        await self.record_metadata(
            section_id,
            result.metadata,
            organization_id=organization_id,
            raw_text=raw_text,
            enforced_text=result.enforced_text,
        )

        LOGGER.info(
            "Generation enforcement applied",
            extra={
                "section_id": str(section_id),
                "claims_replaced": result.metadata.claims_replaced,
                "paragraphs_placeholdered": result.metadata.paragraphs_placeholdered,
                "used_generic_knowledge": result.metadata.used_generic_knowledge,
            }
        )
        return result

    async def record_metadata(
        self,
        section_id: UUID,
        metadata: GenerationEnforcementMetadata,
        organization_id: Optional[UUID] = None,
        raw_text: Optional[str] = None,
        enforced_text: Optional[str] = None,
    ) -> bool:
        """Persist a metadata row and mirror its flags onto the section.

        Returns:
            True if persisted, False if persistence failed and was logged
        """
        try:
            await self.metadata_repo.create_for_section(
                section_id=section_id,
                organization_id=organization_id,
                metadata=metadata,
                raw_generation=raw_text,
                enforced_generation=enforced_text,
            )
            await self.section_repo.update_generation_flags(
                section_id,
                used_generic_knowledge=metadata.used_generic_knowledge,
                retrieved_chunk_count=metadata.retrieved_chunk_count,
                enforcement_applied=metadata.enforcement_applied,
            )
            await self.session.commit()
            return True
        except Exception as e:
            LOGGER.error(
                "Failed to persist generation metadata",
                exc_info=True,
                extra={"section_id": str(section_id), "error": str(e)}
            )
            await self.session.rollback()
            return False
