"""Repository for placeholder records."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from grantguard.database.models import PlaceholderRecord, ProposalSection
from grantguard.repositories.base_repository import BaseRepository
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


class PlaceholderRepository(BaseRepository[PlaceholderRecord]):
    """Repository for PlaceholderRecord model."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, PlaceholderRecord)

    async def get_by_proposal(self, proposal_id: UUID) -> List[PlaceholderRecord]:
        try:
            query = (
                select(PlaceholderRecord)
                .join(ProposalSection, ProposalSection.id == PlaceholderRecord.section_id)
                .where(ProposalSection.proposal_id == proposal_id)
                .order_by(ProposalSection.order_index, PlaceholderRecord.position_start)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting placeholders by proposal: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise

    async def delete_by_section(self, section_id: UUID) -> int:
        return await self.delete_where(section_id=section_id)

    async def mark_resolved(self, placeholder_id: UUID, value: str, user_id: str) -> Optional[PlaceholderRecord]:
        return await self.update(
            placeholder_id,
            resolved=True,
            resolved_value=value,
            resolved_by=user_id,
            resolved_at=datetime.now(timezone.utc),
        )
