"""Repository for generation enforcement audit rows."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from grantguard.database.models import GenerationMetadata
from grantguard.repositories.base_repository import BaseRepository
from grantguard.schemas.enforcement import GenerationEnforcementMetadata
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


class GenerationMetadataRepository(BaseRepository[GenerationMetadata]):
    """Repository for GenerationMetadata model."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, GenerationMetadata)

    async def create_for_section(
        self,
        section_id: UUID,
        metadata: GenerationEnforcementMetadata,
        organization_id: Optional[UUID] = None,
        raw_generation: Optional[str] = None,
        enforced_generation: Optional[str] = None,
    ) -> GenerationMetadata:
        """Record one enforcement run for a section."""
        return await self.create(
            section_id=section_id,
            organization_id=organization_id,
            raw_generation=raw_generation,
            enforced_generation=enforced_generation,
            **metadata.model_dump(),
        )

    async def get_latest_for_section(self, section_id: UUID) -> Optional[GenerationMetadata]:
        try:
            query = (
                select(GenerationMetadata)
                .where(GenerationMetadata.section_id == section_id)
                .order_by(GenerationMetadata.created_at.desc())
                .limit(1)
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting latest generation metadata: {e}",
                extra={"section_id": str(section_id)},
                exc_info=True
            )
            raise

    async def get_by_section(self, section_id: UUID) -> List[GenerationMetadata]:
        try:
            query = (
                select(GenerationMetadata)
                .where(GenerationMetadata.section_id == section_id)
                .order_by(GenerationMetadata.created_at)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting generation metadata by section: {e}",
                extra={"section_id": str(section_id)},
                exc_info=True
            )
            raise
