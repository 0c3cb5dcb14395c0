"""Post-hoc verification of claims in attributed paragraphs.

Each claim gets its own retrieval query. Evidence confidence starts from the
retrieval score and is boosted by how directly the chunk states the claim:
an exact value match, a number within 10%, or most of an organization's
name words.
"""

import asyncio
import math
import re
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.repositories.attribution_repository import AttributedParagraphRepository
from grantguard.repositories.proposal_repository import ProposalRepository
from grantguard.repositories.verified_claim_repository import VerifiedClaimRepository
from grantguard.schemas.enforcement import (
    ClaimEvidence,
    ClaimStatus,
    ClaimType,
    ClaimVerificationSummary,
    ExtractedClaim,
    RetrievedChunk,
    RiskLevel,
    VerifiedClaim,
)
from grantguard.services.enforcement.claim_extractor import ClaimExtractor, LLMClaimEnhancer
from grantguard.services.enforcement.placeholders import mask_placeholders
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from grantguard.utils.logging import get_logger
from grantguard.utils.text import enclosing_sentence

LOGGER = get_logger(__name__)

MIN_EVIDENCE_CONFIDENCE = 0.3
MAX_EVIDENCE = 3
CONFLICT_CEILING = 0.5
NUMERIC_TOLERANCE = 0.1
MATCH_CONTEXT_CHARS = 30

EXACT_MATCH_BOOST = 0.3
NUMERIC_MATCH_BOOST = 0.2
ORG_MATCH_BOOST = 0.1
NO_MATCH_FACTOR = 0.5

NUMERIC_TYPES = frozenset({ClaimType.NUMBER, ClaimType.PERCENTAGE, ClaimType.CURRENCY})

_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")
_NUMERIC_VALUE_RE = re.compile(r"\d+(?:\.\d+)?")


def extract_numeric_value(text: str) -> Optional[float]:
    """First number in ``text`` with currency, percent and comma marks removed."""
    match = _NUMERIC_VALUE_RE.search(re.sub(r"[$,%]", "", text or ""))
    return float(match.group(0)) if match else None


def evidence_confidence(claim: ExtractedClaim, chunk_text: str, retrieval_score: float) -> float:
    """Confidence that ``chunk_text`` backs the claim.

    Args:
        claim: Claim being verified
        chunk_text: Retrieved chunk content
        retrieval_score: Similarity reported by retrieval

    Returns:
        Confidence in [0, 1]
    """
    chunk_lower = chunk_text.lower()
    value_lower = claim.value.lower()

    if value_lower and value_lower in chunk_lower:
        return min(1.0, retrieval_score + EXACT_MATCH_BOOST)

    if claim.type in NUMERIC_TYPES:
        claimed = extract_numeric_value(claim.value)
        if claimed:
            for token in _NUMBER_RE.findall(chunk_text):
                found = extract_numeric_value(token)
                if found and abs(found - claimed) / claimed < NUMERIC_TOLERANCE:
                    return min(1.0, retrieval_score + NUMERIC_MATCH_BOOST)

    if claim.type == ClaimType.NAMED_ORG:
        words = value_lower.split()
        matched = [w for w in words if len(w) > 2 and w in chunk_lower]
        if words and len(matched) >= math.ceil(len(words) / 2):
            return min(1.0, retrieval_score + ORG_MATCH_BOOST)

    return retrieval_score * NO_MATCH_FACTOR


def find_matching_text(value: str, chunk_text: str) -> str:
    idx = chunk_text.lower().find(value.lower())
    if idx >= 0:
        start = max(0, idx - MATCH_CONTEXT_CHARS)
        end = min(len(chunk_text), idx + len(value) + MATCH_CONTEXT_CHARS)
        return "..." + chunk_text[start:end] + "..."
    return chunk_text[:100] + "..."


def build_evidence(claim: ExtractedClaim, chunks: Sequence[RetrievedChunk]) -> List[ClaimEvidence]:
    """Top evidence items with confidence of at least 0.3, best first."""
    evidence = []
    for chunk in chunks:
        confidence = evidence_confidence(claim, chunk.content, chunk.score)
        if confidence < MIN_EVIDENCE_CONFIDENCE:
            continue
        evidence.append(ClaimEvidence(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            document_name=chunk.filename or "Unknown",
            matched_text=find_matching_text(claim.value, chunk.content),
            document_date=chunk.document_date,
            confidence=confidence,
        ))
    evidence.sort(key=lambda e: e.confidence, reverse=True)
    return evidence[:MAX_EVIDENCE]


def _months_between(earlier: datetime, later: datetime) -> int:
    if earlier.tzinfo is None:
        earlier = earlier.replace(tzinfo=timezone.utc)
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def is_stale(evidence: Sequence[ClaimEvidence], stale_months: int, now: Optional[datetime] = None) -> bool:
    """True when every evidence item has a document date older than ``stale_months``."""
    if not evidence:
        return False
    now = now or datetime.now(timezone.utc)
    return all(
        e.document_date is not None and _months_between(e.document_date, now) > stale_months
        for e in evidence
    )


def determine_claim_status(
    evidence: Sequence[ClaimEvidence],
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
    now: Optional[datetime] = None,
) -> ClaimStatus:
    """Classify a claim from its ranked evidence."""
    if not evidence:
        return ClaimStatus.UNVERIFIED

    best = evidence[0].confidence
    if best >= thresholds.claim_verify_threshold:
        if is_stale(evidence, thresholds.source_stale_months, now):
            return ClaimStatus.OUTDATED
        return ClaimStatus.VERIFIED

    if len({e.document_id for e in evidence}) > 1 and best < CONFLICT_CEILING:
        return ClaimStatus.CONFLICTING

    return ClaimStatus.UNVERIFIED


def build_verification_summary(proposal_id: UUID, claims: Sequence[VerifiedClaim]) -> ClaimVerificationSummary:
    total = len(claims)
    verified = sum(1 for c in claims if c.status == ClaimStatus.VERIFIED)
    return ClaimVerificationSummary(
        proposal_id=proposal_id,
        total_claims=total,
        verified=verified,
        unverified=sum(1 for c in claims if c.status == ClaimStatus.UNVERIFIED),
        conflicting=sum(1 for c in claims if c.status == ClaimStatus.CONFLICTING),
        outdated=sum(1 for c in claims if c.status == ClaimStatus.OUTDATED),
        high_risk_unverified=sum(
            1 for c in claims if c.risk_level == RiskLevel.HIGH and c.status == ClaimStatus.UNVERIFIED
        ),
        verification_rate=round(100 * verified / total) if total else 0,
        claims=list(claims),
    )


class ClaimVerifier:
    """Extracts claims from attributed paragraphs and verifies them.

    Attributes:
        session: Database session
        retriever: Graceful retriever for per-claim evidence searches
        completer: Optional chat completer enabling LLM claim extraction
        thresholds: Verification thresholds
    """

    def __init__(
        self,
        session: AsyncSession,
        retriever=None,
        completer=None,
        thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
        top_k: int = 5,
    ):
        self.session = session
        self.retriever = retriever
        self.thresholds = thresholds
        self.top_k = top_k
        self.extractor = ClaimExtractor()
        self.enhancer = LLMClaimEnhancer(completer, self.extractor) if completer else None
        self.paragraph_repo = AttributedParagraphRepository(session)
        self.claim_repo = VerifiedClaimRepository(session)
        self.proposal_repo = ProposalRepository(session)

        LOGGER.info(
            "Initialized ClaimVerifier",
            extra={
                "llm_extraction": self.enhancer is not None,
                "claim_verify_threshold": thresholds.claim_verify_threshold,
            }
        )

    async def extract_claims(self, text: str) -> List[ExtractedClaim]:
        """Extract claims with the enclosing sentence as context.

        Placeholder tokens are blanked first: a value quoted in a placeholder
        description is a request for verification, not a claim.
        """
        masked = mask_placeholders(text)
        if self.enhancer is not None:
            claims = await self.enhancer.extract_claims(masked)
        else:
            claims = self.extractor.extract_claims(masked)
        return [
            c.model_copy(update={"context": enclosing_sentence(masked, c.start, c.end)})
            for c in claims
        ]

    async def find_evidence(self, claim: ExtractedClaim, organization_id: Optional[UUID]) -> List[ClaimEvidence]:
        if self.retriever is None:
            return []
        query = f"{claim.type.value}: {claim.value} {claim.context}"
        chunks = await self.retriever.retrieve(query, organization_id, self.top_k)
        return build_evidence(claim, chunks)

    async def verify_claim(self, claim: ExtractedClaim, organization_id: Optional[UUID]) -> VerifiedClaim:
        evidence = await self.find_evidence(claim, organization_id)
        return VerifiedClaim(
            type=claim.type,
            value=claim.value,
            context=claim.context,
            start=claim.start,
            end=claim.end,
            risk_level=claim.risk_level,
            status=determine_claim_status(evidence, self.thresholds),
            evidence=evidence,
            verification_score=evidence[0].confidence if evidence else 0.0,
        )

    async def extract_and_verify_proposal(
        self,
        proposal_id: UUID,
        organization_id: Optional[UUID] = None,
    ) -> ClaimVerificationSummary:
        """Verify every claim in the proposal's attributed paragraphs.

        Stored claims of each paragraph are replaced by the new results.

        Args:
            proposal_id: Proposal to verify
            organization_id: Retrieval scope, looked up when omitted

        Returns:
            ClaimVerificationSummary over all claims found
        """
        paragraphs = await self.paragraph_repo.get_by_proposal(proposal_id)
        if not paragraphs:
            return build_verification_summary(proposal_id, [])

        if organization_id is None:
            proposal = await self.proposal_repo.get_by_id(proposal_id)
            organization_id = proposal.organization_id if proposal else None

        all_claims: List[VerifiedClaim] = []
        try:
            for paragraph in paragraphs:
                extracted = await self.extract_claims(paragraph.text)
                verified = await asyncio.gather(
                    *(self.verify_claim(c, organization_id) for c in extracted)
                )
                verified = [c.model_copy(update={"paragraph_id": paragraph.id}) for c in verified]

                await self.claim_repo.delete_by_paragraph(paragraph.id)
                rows = await self.claim_repo.bulk_create([
                    {
                        "paragraph_id": paragraph.id,
                        "section_id": paragraph.section_id,
                        "claim_type": c.type.value,
                        "value": c.value,
                        "context": c.context,
                        "position_start": c.start,
                        "position_end": c.end,
                        "risk_level": c.risk_level.value,
                        "status": c.status.value,
                        "verification_score": c.verification_score,
                        "evidence": [e.model_dump(mode="json") for e in c.evidence],
                    }
                    for c in verified
                ])
                all_claims.extend(c.model_copy(update={"id": row.id}) for c, row in zip(verified, rows))
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        summary = build_verification_summary(proposal_id, all_claims)
        LOGGER.info(
            "Verified proposal claims",
            extra={
                "proposal_id": str(proposal_id),
                "total_claims": summary.total_claims,
                "verified": summary.verified,
                "high_risk_unverified": summary.high_risk_unverified,
            }
        )
        return summary

    async def get_verification_summary(self, proposal_id: UUID) -> Optional[ClaimVerificationSummary]:
        """Summary of stored claims, or None when none were stored."""
        records = await self.claim_repo.get_by_proposal(proposal_id)
        if not records:
            return None
        claims = [
            VerifiedClaim(
                id=r.id,
                paragraph_id=r.paragraph_id,
                type=ClaimType(r.claim_type),
                value=r.value,
                context=r.context,
                start=r.position_start,
                end=r.position_end,
                risk_level=RiskLevel(r.risk_level),
                status=ClaimStatus(r.status),
                evidence=[ClaimEvidence(**e) for e in (r.evidence or [])],
                verification_score=r.verification_score,
            )
            for r in records
        ]
        return build_verification_summary(proposal_id, claims)
