"""Repository for the append-only export audit log."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from grantguard.database.models import ExportAuditLog
from grantguard.repositories.base_repository import BaseRepository
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ExportAuditRepository(BaseRepository[ExportAuditLog]):
    """Repository for ExportAuditLog model.

    Rows are only ever inserted, plus the one-time attestation stamp.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, ExportAuditLog)

    async def get_by_proposal(self, proposal_id: UUID, limit: int = 50) -> List[ExportAuditLog]:
        try:
            query = (
                select(ExportAuditLog)
                .where(ExportAuditLog.proposal_id == proposal_id)
                .order_by(ExportAuditLog.created_at.desc())
                .limit(limit)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error getting export audits by proposal: {e}",
                extra={"proposal_id": str(proposal_id)},
                exc_info=True
            )
            raise

    async def record_attestation(self, audit_id: UUID, attestation_text: str) -> Optional[ExportAuditLog]:
        """Stamp an audit row with the user's attestation.

        Returns:
            The updated row, or None if no row has that ID
        """
        try:
            record = await self.get_by_id(audit_id)
            if not record:
                return None
            record.attestation_text = attestation_text
            record.attestation_timestamp = datetime.now(timezone.utc)
            await self.session.flush()
            return record
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error recording attestation: {e}",
                extra={"audit_id": str(audit_id)},
                exc_info=True
            )
            raise
