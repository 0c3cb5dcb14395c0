"""Repositories for RFP checklist items and their section mappings."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from grantguard.database.models import ChecklistItem, ChecklistSectionMapping
from grantguard.repositories.base_repository import BaseRepository
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ChecklistItemRepository(BaseRepository[ChecklistItem]):
    """Repository for ChecklistItem model."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ChecklistItem)

    async def get_by_proposal(self, proposal_id: UUID) -> List[ChecklistItem]:
        """Get the checklist of a proposal in RFP order."""
        try:
            query = (
                select(ChecklistItem)
                .where(ChecklistItem.proposal_id == proposal_id)
                .order_by(ChecklistItem.order_index)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting checklist items by proposal: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise

    async def delete_by_proposal(self, proposal_id: UUID) -> int:
        return await self.delete_where(proposal_id=proposal_id)


class ChecklistMappingRepository(BaseRepository[ChecklistSectionMapping]):
    """Repository for ChecklistSectionMapping model.

    At most one row exists per (item, section) pair.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, ChecklistSectionMapping)

    async def get_by_proposal(self, proposal_id: UUID) -> List[ChecklistSectionMapping]:
        """Get every mapping of a proposal's checklist items."""
        try:
            query = (
                select(ChecklistSectionMapping)
                .join(ChecklistItem, ChecklistItem.id == ChecklistSectionMapping.checklist_item_id)
                .where(ChecklistItem.proposal_id == proposal_id)
                .order_by(ChecklistItem.order_index, ChecklistSectionMapping.created_at)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting checklist mappings by proposal: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise

    async def get_for_pair(self, checklist_item_id: UUID, section_id: UUID) -> Optional[ChecklistSectionMapping]:
        try:
            query = select(ChecklistSectionMapping).where(
                ChecklistSectionMapping.checklist_item_id == checklist_item_id,
                ChecklistSectionMapping.section_id == section_id,
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting checklist mapping: {e}",
                extra={"checklist_item_id": str(checklist_item_id), "section_id": str(section_id)},
                exc_info=True
            )
            raise

    async def delete_auto_mappings(self, checklist_item_id: UUID) -> int:
        return await self.delete_where(checklist_item_id=checklist_item_id, mapping_type="AUTO")

    async def upsert(
        self,
        checklist_item_id: UUID,
        section_id: UUID,
        mapping_type: str,
        confidence: Optional[float],
    ) -> ChecklistSectionMapping:
        """Create the mapping for a pair, or overwrite its type and confidence."""
        existing = await self.get_for_pair(checklist_item_id, section_id)
        if existing is None:
            return await self.create(
                checklist_item_id=checklist_item_id,
                section_id=section_id,
                mapping_type=mapping_type,
                confidence=confidence,
            )
        return await self.update(existing.id, mapping_type=mapping_type, confidence=confidence)
