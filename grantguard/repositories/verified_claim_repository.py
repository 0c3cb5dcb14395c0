"""Repository for verified claim records."""

from typing import List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from grantguard.database.models import ProposalSection, VerifiedClaimRecord
from grantguard.repositories.base_repository import BaseRepository
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


class VerifiedClaimRepository(BaseRepository[VerifiedClaimRecord]):
    """Repository for VerifiedClaimRecord model."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, VerifiedClaimRecord)

    async def get_by_proposal(self, proposal_id: UUID) -> List[VerifiedClaimRecord]:
        try:
            query = (
                select(VerifiedClaimRecord)
                .join(ProposalSection, ProposalSection.id == VerifiedClaimRecord.section_id)
                .where(ProposalSection.proposal_id == proposal_id)
                .order_by(ProposalSection.order_index, VerifiedClaimRecord.position_start)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting claims by proposal: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise

    async def delete_by_paragraph(self, paragraph_id: UUID) -> int:
        return await self.delete_where(paragraph_id=paragraph_id)
