"""Repository for RFP ambiguity flags."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from grantguard.database.models import AmbiguityFlagRecord
from grantguard.repositories.base_repository import BaseRepository
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


class AmbiguityRepository(BaseRepository[AmbiguityFlagRecord]):
    """Repository for AmbiguityFlagRecord model."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AmbiguityFlagRecord)

    async def get_by_proposal(self, proposal_id: UUID, unresolved_only: bool = False) -> List[AmbiguityFlagRecord]:
        """Get ambiguity flags of a proposal.

        Args:
            proposal_id: Proposal UUID
            unresolved_only: Only return flags not yet resolved

        Returns:
            Flags in creation order
        """
        try:
            query = select(AmbiguityFlagRecord).where(AmbiguityFlagRecord.proposal_id == proposal_id)
            if unresolved_only:
                query = query.where(AmbiguityFlagRecord.resolved.is_(False))
            query = query.order_by(AmbiguityFlagRecord.created_at)
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting ambiguities by proposal: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise

    async def delete_by_proposal(self, proposal_id: UUID) -> int:
        return await self.delete_where(proposal_id=proposal_id)

    async def mark_resolved(self, flag_id: UUID, resolution: str, user_id: str) -> Optional[AmbiguityFlagRecord]:
        return await self.update(
            flag_id,
            resolved=True,
            resolution=resolution,
            resolved_by=user_id,
            resolved_at=datetime.now(timezone.utc),
        )
