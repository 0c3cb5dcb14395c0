"""Repositories for attributed paragraphs and section coverage records."""

from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from grantguard.database.models import AttributedParagraph, ProposalSection, SectionCoverageRecord
from grantguard.repositories.base_repository import BaseRepository
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


class AttributedParagraphRepository(BaseRepository[AttributedParagraph]):
    """Repository for AttributedParagraph model.

    Paragraphs of a section are replaced as a set: callers delete by section
    and bulk-create the new rows inside one transaction.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, AttributedParagraph)

    async def get_by_section(self, section_id: UUID) -> List[AttributedParagraph]:
        try:
            query = (
                select(AttributedParagraph)
                .where(AttributedParagraph.section_id == section_id)
                .order_by(AttributedParagraph.paragraph_index)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting paragraphs by section: {e}",
                extra={"section_id": str(section_id)},
                exc_info=True
            )
            raise

    async def get_by_proposal(self, proposal_id: UUID) -> List[AttributedParagraph]:
        """Get every attributed paragraph of a proposal.

        Args:
            proposal_id: Proposal UUID

        Returns:
            Paragraphs ordered by section order, then paragraph index
        """
        try:
            query = (
                select(AttributedParagraph)
                .join(ProposalSection, ProposalSection.id == AttributedParagraph.section_id)
                .where(ProposalSection.proposal_id == proposal_id)
                .order_by(ProposalSection.order_index, AttributedParagraph.paragraph_index)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting paragraphs by proposal: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise

    async def delete_by_section(self, section_id: UUID) -> int:
        """Delete all paragraphs of a section.

        Returns:
            Number of rows deleted
        """
        return await self.delete_where(section_id=section_id)


class SectionCoverageRepository(BaseRepository[SectionCoverageRecord]):
    """Repository for SectionCoverageRecord model (one row per section)."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, SectionCoverageRecord)

    async def get_by_section(self, section_id: UUID) -> Optional[SectionCoverageRecord]:
        try:
            query = select(SectionCoverageRecord).where(SectionCoverageRecord.section_id == section_id)
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting coverage by section: {e}",
                extra={"section_id": str(section_id)},
                exc_info=True
            )
            raise

    async def get_by_proposal(self, proposal_id: UUID) -> List[Tuple[SectionCoverageRecord, str]]:
        """Get coverage records of a proposal with their section names.

        Returns:
            (record, section_name) pairs in section order
        """
        try:
            query = (
                select(SectionCoverageRecord, ProposalSection.section_name)
                .join(ProposalSection, ProposalSection.id == SectionCoverageRecord.section_id)
                .where(ProposalSection.proposal_id == proposal_id)
                .order_by(ProposalSection.order_index)
            )
            result = await self.session.execute(query)
            return [(row[0], row[1]) for row in result.all()]
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting coverage by proposal: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise

    async def upsert(self, section_id: UUID, **fields) -> SectionCoverageRecord:
        """Create or replace the coverage record of a section.

        Args:
            section_id: Section UUID
            **fields: Coverage fields to store

        Returns:
            The created or updated record
        """
        try:
            fields.setdefault("computed_at", datetime.now(timezone.utc))
            existing = await self.get_by_section(section_id)
            if existing:
                for key, value in fields.items():
                    if hasattr(existing, key):
                        setattr(existing, key, value)
                await self.session.flush()
                return existing
            return await self.create(section_id=section_id, **fields)
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error upserting section coverage: {e}",
                extra={"section_id": str(section_id)},
                exc_info=True
            )
            raise
