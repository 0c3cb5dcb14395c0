"""Repositories for proposals and their sections."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from grantguard.database.models import Proposal, ProposalSection
from grantguard.repositories.base_repository import BaseRepository
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ProposalRepository(BaseRepository[Proposal]):
    """Repository for Proposal model."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Proposal)

    async def set_enforcement_failure(self, proposal_id: UUID, failed: bool = True) -> Optional[Proposal]:
        """Flag (or clear) a generation-time enforcement failure on a proposal."""
        return await self.update(proposal_id, enforcement_failure=failed)

    async def get_enforcement_failure(self, proposal_id: UUID) -> bool:
        try:
            query = select(Proposal.enforcement_failure).where(Proposal.id == proposal_id)
            result = await self.session.execute(query)
            return bool(result.scalar_one_or_none())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error reading enforcement failure flag: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise


class SectionRepository(BaseRepository[ProposalSection]):
    """Repository for ProposalSection model.

    Sections are always returned in their display order.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, ProposalSection)

    async def get_by_proposal(self, proposal_id: UUID) -> List[ProposalSection]:
        """Get all sections of a proposal ordered by ``order_index``.

        Args:
            proposal_id: Proposal UUID

        Returns:
            Ordered list of sections, empty if the proposal has none
        """
        try:
            query = (
                select(ProposalSection)
                .where(ProposalSection.proposal_id == proposal_id)
                .order_by(ProposalSection.order_index)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting sections by proposal: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise

    async def update_content(self, section_id: UUID, content: str) -> Optional[ProposalSection]:
        return await self.update(section_id, content=content)

    async def update_generation_flags(
        self,
        section_id: UUID,
        used_generic_knowledge: bool,
        retrieved_chunk_count: int,
        enforcement_applied: bool,
    ) -> Optional[ProposalSection]:
        """Mirror the latest generation metadata onto the section row."""
        return await self.update(
            section_id,
            used_generic_knowledge=used_generic_knowledge,
            retrieved_chunk_count=retrieved_chunk_count,
            enforcement_applied=enforcement_applied,
        )
