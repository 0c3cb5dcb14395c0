"""Ambiguity detection for RFP text."""

from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.core.exceptions import AmbiguityNotFoundError
from grantguard.database.models import AmbiguityFlagRecord
from grantguard.repositories.ambiguity_repository import AmbiguityRepository
from grantguard.schemas.enforcement import AmbiguityFlag, AmbiguitySummary, AmbiguityType
from grantguard.services.enforcement.ambiguity_rules import detect_deterministic
from grantguard.utils.json_parser import parse_json_safely
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)

LLM_EXCERPT_CHARS = 8000

AMBIGUITY_PROMPT = """Analyze this RFP for ambiguous or unclear instructions.

Look for:
1. CONTRADICTORY: Requirements that conflict with each other
2. VAGUE: Requirements without specific criteria or metrics
3. IMPLICIT: Important requirements implied but not stated explicitly
4. SCOPE_UNCLEAR: Requirements where the scope or boundaries are ambiguous

Return JSON:
{
  "ambiguities": [
    {
      "type": "CONTRADICTORY" | "VAGUE" | "IMPLICIT" | "SCOPE_UNCLEAR",
      "description": "Clear description of the ambiguity",
      "source_texts": ["relevant quote 1", "relevant quote 2"],
      "suggested_resolutions": ["option 1", "option 2"],
      "requires_user_input": true/false
    }
  ]
}

Only flag issues that would genuinely cause confusion when writing a proposal.
Set requires_user_input=true only for critical issues that significantly impact the proposal.
Return {"ambiguities": []} if no significant ambiguities are found."""


def build_ambiguity_summary(proposal_id: UUID, ambiguities: Sequence[AmbiguityFlag]) -> AmbiguitySummary:
    return AmbiguitySummary(
        proposal_id=proposal_id,
        total=len(ambiguities),
        unresolved=sum(1 for a in ambiguities if not a.resolved),
        requires_input=sum(1 for a in ambiguities if a.requires_user_input and not a.resolved),
        ambiguities=list(ambiguities),
    )


def flag_from_record(record: AmbiguityFlagRecord) -> AmbiguityFlag:
    return AmbiguityFlag(
        id=record.id,
        proposal_id=record.proposal_id,
        type=AmbiguityType(record.ambiguity_type),
        description=record.description,
        source_texts=list(record.source_texts or []),
        suggested_resolutions=list(record.suggested_resolutions or []),
        requires_user_input=record.requires_user_input,
        resolved=record.resolved,
        resolution=record.resolution,
        resolved_by=record.resolved_by,
        resolved_at=record.resolved_at,
    )


def _list_of_strings(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def parse_llm_ambiguities(response: str) -> List[AmbiguityFlag]:
    """Turn the model's JSON answer into flags, skipping malformed items."""
    parsed = parse_json_safely(response or "")
    if not isinstance(parsed, dict) or not isinstance(parsed.get("ambiguities"), list):
        if response:
            LOGGER.warning("Unparsable LLM ambiguity response ignored")
        return []

    flags = []
    for item in parsed["ambiguities"]:
        if not isinstance(item, dict):
            continue
        description = str(item.get("description", "")).strip()
        try:
            ambiguity_type = AmbiguityType(str(item.get("type", "")).strip().upper())
        except ValueError:
            continue
        if not description:
            continue
        flags.append(AmbiguityFlag(
            type=ambiguity_type,
            description=description,
            source_texts=_list_of_strings(item.get("source_texts", item.get("sourceTexts"))),
            suggested_resolutions=_list_of_strings(
                item.get("suggested_resolutions", item.get("suggestedResolutions"))
            ),
            requires_user_input=bool(item.get("requires_user_input", item.get("requiresUserInput", False))),
        ))
    return flags


class AmbiguityDetector:
    """Flags contradictory, vague or unclear RFP instructions.

    The rule tables always run. When a completer is configured an LLM pass
    adds nuanced findings, de-duplicated by description.

    Attributes:
        session: Database session
        completer: Optional chat completer for the LLM pass
    """

    def __init__(self, session: AsyncSession, completer=None):
        self.session = session
        self.completer = completer
        self.repository = AmbiguityRepository(session)

    async def detect_with_llm(self, rfp_text: str) -> List[AmbiguityFlag]:
        if self.completer is None or not rfp_text:
            return []
        response = await self.completer.complete(AMBIGUITY_PROMPT, rfp_text[:LLM_EXCERPT_CHARS])
        return parse_llm_ambiguities(response)

    async def detect_ambiguities(self, rfp_text: str) -> List[AmbiguityFlag]:
        """Deterministic flags followed by new LLM flags.

        Args:
            rfp_text: Raw RFP text

        Returns:
            Flags with unique lowercase descriptions
        """
        ambiguities = detect_deterministic(rfp_text or "")

        try:
            llm_flags = await self.detect_with_llm(rfp_text)
        except Exception as e:
            LOGGER.warning(
                "LLM ambiguity detection failed, using rule results only",
                extra={"error": str(e), "rule_flags": len(ambiguities)}
            )
            return ambiguities

        seen = {a.description.lower() for a in ambiguities}
        for flag in llm_flags:
            key = flag.description.lower()
            if key in seen:
                continue
            seen.add(key)
            ambiguities.append(flag)
        return ambiguities

    async def analyze_and_persist(self, proposal_id: UUID, rfp_text: str) -> AmbiguitySummary:
        """Detect ambiguities and replace the proposal's stored flags.

        Args:
            proposal_id: Proposal the RFP belongs to
            rfp_text: Raw RFP text

        Returns:
            AmbiguitySummary of the new flags
        """
        ambiguities = await self.detect_ambiguities(rfp_text)

        try:
            await self.repository.delete_by_proposal(proposal_id)
            rows = await self.repository.bulk_create([
                {
                    "proposal_id": proposal_id,
                    "ambiguity_type": a.type.value,
                    "description": a.description,
                    "source_texts": a.source_texts,
                    "suggested_resolutions": a.suggested_resolutions,
                    "requires_user_input": a.requires_user_input,
                    "resolved": False,
                }
                for a in ambiguities
            ])
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        persisted = [
            a.model_copy(update={"id": row.id, "proposal_id": proposal_id})
            for a, row in zip(ambiguities, rows)
        ]
        summary = build_ambiguity_summary(proposal_id, persisted)
        LOGGER.info(
            "Analyzed RFP ambiguities",
            extra={
                "proposal_id": str(proposal_id),
                "total": summary.total,
                "requires_input": summary.requires_input,
            }
        )
        return summary

    async def get_ambiguity_summary(self, proposal_id: UUID) -> AmbiguitySummary:
        records = await self.repository.get_by_proposal(proposal_id)
        return build_ambiguity_summary(proposal_id, [flag_from_record(r) for r in records])

    async def get_blocking_ambiguities(self, proposal_id: UUID) -> List[AmbiguityFlag]:
        """Unresolved flags that need the user's decision."""
        records = await self.repository.get_by_proposal(proposal_id, unresolved_only=True)
        return [flag_from_record(r) for r in records if r.requires_user_input]

    async def resolve_ambiguity(self, flag_id: UUID, resolution: str, user_id: str) -> AmbiguityFlag:
        """Mark a flag resolved.

        Raises:
            AmbiguityNotFoundError: If no flag has that ID
        """
        try:
            record = await self.repository.mark_resolved(flag_id, resolution, user_id)
            if record is None:
                raise AmbiguityNotFoundError(f"Ambiguity flag {flag_id} not found")
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        LOGGER.info(
            "Resolved ambiguity",
            extra={"ambiguity_id": str(flag_id), "user_id": user_id}
        )
        return flag_from_record(record)
