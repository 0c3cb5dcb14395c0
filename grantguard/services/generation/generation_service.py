"""Section drafting with blocking enforcement.

Content is never returned before enforcement and its metadata persistence
have finished. Saved content is immediately re-scanned for placeholders and
re-attributed, so stored coverage always describes the current draft. When retrieval finds no relevant sources the LLM is not
called at all and the section gets placeholder-only content.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.core.exceptions import (
    APIClientError,
    EnforcementError,
    ProposalNotFoundError,
    SectionNotFoundError,
)
from grantguard.prompts.generation_prompts import (
    SECTION_SYSTEM_PROMPT,
    build_section_user_prompt,
    format_context_for_prompt,
)
from grantguard.repositories.proposal_repository import ProposalRepository, SectionRepository
from grantguard.schemas.generation import SectionDraftResult
from grantguard.services.enforcement.citation_mapper import CitationMapper
from grantguard.services.enforcement.generation_enforcer import (
    GenerationEnforcer,
    check_retrieval_sufficiency,
    empty_kb_marker,
    generate_placeholder_only_content,
)
from grantguard.services.enforcement.instruction_sanitizer import sanitize_custom_instructions
from grantguard.services.enforcement.placeholder_service import PlaceholderService
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


def build_retrieval_query(section_name: str, description: Optional[str], funder_name: Optional[str]) -> str:
    return f"{section_name} {description or ''} for grant proposal to {funder_name or 'funder'}"


class GenerationService:
    """Drafts proposal sections through retrieval, the LLM and enforcement.

    Attributes:
        session: Database session
        retriever: Graceful retriever for knowledge-base chunks
        completer: Chat completer for the draft itself; its failures propagate
        thresholds: Enforcement thresholds
    """

    def __init__(
        self,
        session: AsyncSession,
        retriever=None,
        completer=None,
        thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
        top_k: int = 8,
    ):
        self.session = session
        self.retriever = retriever
        self.completer = completer
        self.thresholds = thresholds
        self.top_k = top_k
        self.section_repo = SectionRepository(session)
        self.proposal_repo = ProposalRepository(session)
        self.enforcer = GenerationEnforcer(session, thresholds)
        self.placeholder_service = PlaceholderService(session)
        self.citation_mapper = CitationMapper(session, retriever=retriever, thresholds=thresholds)

        LOGGER.info(
            "Initialized GenerationService",
            extra={
                "min_chunk_similarity": thresholds.min_chunk_similarity,
                "grounded_threshold": thresholds.grounded_threshold,
                "top_k": top_k,
            }
        )

    async def generate_section_draft(
        self,
        section_id: UUID,
        custom_instructions: Optional[str] = None,
        existing_content: Optional[str] = None,
    ) -> SectionDraftResult:
        """Draft a section and save the enforced content.

        Args:
            section_id: Section to draft
            custom_instructions: Optional user instructions, sanitized first
            existing_content: Optional draft for the model to improve

        Returns:
            SectionDraftResult; ``refused`` is True when the knowledge base
            had no relevant sources

        Raises:
            SectionNotFoundError: If the section does not exist
            ProposalNotFoundError: If the section's proposal does not exist
            APIClientError: If no completer is configured or the LLM call fails
            EnforcementError: If enforcement itself fails; the proposal is
                flagged before this is raised
        """
        section = await self.section_repo.get_by_id(section_id)
        if section is None:
            raise SectionNotFoundError(f"Section not found: {section_id}")
        proposal = await self.proposal_repo.get_by_id(section.proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(f"Proposal not found: {section.proposal_id}")

        query = build_retrieval_query(section.section_name, section.description, proposal.funder_name)
        chunks = []
        if self.retriever is not None:
            chunks = await self.retriever.retrieve(query, proposal.organization_id, self.top_k)

        sufficiency = check_retrieval_sufficiency(chunks, self.thresholds)
        LOGGER.info(
            "Checked retrieval sufficiency",
            extra={
                "section_id": str(section_id),
                "chunks": len(chunks),
                "proceed": sufficiency.proceed,
                "reason": sufficiency.reason,
            }
        )

        if not sufficiency.proceed:
            return await self._refuse(section, proposal, sufficiency, chunks)

        sanitization = sanitize_custom_instructions(custom_instructions)

        if self.completer is None:
            raise APIClientError("No chat completion provider configured")

        system_prompt = SECTION_SYSTEM_PROMPT.format(
            proposal_title=proposal.title,
            funder_name=proposal.funder_name or "Not specified",
        )
        user_prompt = build_section_user_prompt(
            section_name=section.section_name,
            formatted_context=format_context_for_prompt(chunks),
            description=section.description,
            funder_name=proposal.funder_name,
            word_limit=section.word_limit,
            char_limit=section.char_limit,
            existing_content=existing_content,
            custom_instructions=sanitization.sanitized,
        )
        raw_text = await self.completer.complete(system_prompt, user_prompt)

        try:
            result = await self.enforcer.enforce_and_persist(
                raw_text,
                chunks,
                section_id,
                organization_id=proposal.organization_id,
                policy_override=sanitization.policy_override,
                blocked_patterns=sanitization.blocked_patterns,
            )
        except Exception as e:
            LOGGER.error(
                "Generation enforcement failed, flagging proposal",
                exc_info=True,
                extra={"section_id": str(section_id), "proposal_id": str(proposal.id)}
            )
            await self._flag_enforcement_failure(proposal.id)
            raise EnforcementError(f"Enforcement failed for section {section_id}", e)

        await self._save_content(section_id, result.enforced_text)
        await self._refresh_section_records(section, proposal, result.enforced_text, chunks)

        return SectionDraftResult(
            section_id=section_id,
            content=result.enforced_text,
            saved_content=result.enforced_text,
            metadata=result.metadata,
            paragraphs=result.paragraphs,
            replaced_claims=result.replaced_claims,
        )

    async def _refuse(self, section, proposal, sufficiency, chunks) -> SectionDraftResult:
        content = generate_placeholder_only_content(section.section_name, section.description)
        metadata = sufficiency.metadata.model_copy(update={
            "used_generic_knowledge": True,
            "enforcement_applied": True,
            "paragraphs_placeholdered": 1,
        })
        await self.enforcer.record_metadata(
            section.id,
            metadata,
            organization_id=proposal.organization_id,
            raw_text=None,
            enforced_text=content,
        )
        await self._save_content(section.id, content)
        await self._refresh_section_records(section, proposal, content, chunks)

        LOGGER.warning(
            "Generation refused for lack of knowledge-base sources",
            extra={"section_id": str(section.id), "section_name": section.section_name}
        )
        return SectionDraftResult(
            section_id=section.id,
            content=empty_kb_marker(section.section_name),
            saved_content=content,
            refused=True,
            refusal_reason=sufficiency.reason,
            metadata=metadata,
        )

    async def _save_content(self, section_id: UUID, content: str) -> None:
        try:
            await self.section_repo.update_content(section_id, content)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

    async def _refresh_section_records(self, section, proposal, content: str, chunks) -> None:
        """Replace the stored placeholders and attribution derived from the old content.

        Attribution reuses the chunks the draft was generated from.
        """
        await self.placeholder_service.scan_and_persist(proposal.id)
        await self.citation_mapper.map_and_persist(
            section.id,
            content,
            chunks=chunks,
            organization_id=proposal.organization_id,
        )

    async def _flag_enforcement_failure(self, proposal_id: UUID) -> None:
        try:
            await self.proposal_repo.set_enforcement_failure(proposal_id, True)
            await self.session.commit()
        except SQLAlchemyError as e:
            LOGGER.error(
                "Failed to set enforcement failure flag",
                exc_info=True,
                extra={"proposal_id": str(proposal_id), "error": str(e)}
            )
            await self.session.rollback()
