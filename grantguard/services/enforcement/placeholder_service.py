"""Persistence and resolution of placeholders found in section content."""

from typing import List, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.core.exceptions import PlaceholderNotFoundError, ProposalNotFoundError
from grantguard.database.models import PlaceholderRecord
from grantguard.repositories.placeholder_repository import PlaceholderRepository
from grantguard.repositories.proposal_repository import ProposalRepository, SectionRepository
from grantguard.schemas.enforcement import (
    Placeholder,
    PlaceholderPosition,
    PlaceholderSummary,
    PlaceholderType,
)
from grantguard.services.enforcement.placeholders import BLOCKING_TYPES, detect_placeholders
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


def count_blocking_placeholders(content: str) -> int:
    """Number of MISSING_DATA and USER_INPUT_REQUIRED tokens in content."""
    return sum(1 for p in detect_placeholders(content) if p.type in BLOCKING_TYPES)


def build_placeholder_summary(placeholders: Sequence[Placeholder]) -> PlaceholderSummary:
    """Totals plus unresolved counts per type."""
    by_type = {t.value: 0 for t in PlaceholderType}
    for p in placeholders:
        if not p.resolved:
            by_type[p.type.value] += 1
    unresolved = sum(1 for p in placeholders if not p.resolved)
    return PlaceholderSummary(
        total=len(placeholders),
        resolved=len(placeholders) - unresolved,
        unresolved=unresolved,
        by_type=by_type,
        placeholders=list(placeholders),
    )


def placeholder_from_record(record: PlaceholderRecord) -> Placeholder:
    return Placeholder(
        id=record.token_id,
        record_id=record.id,
        section_id=record.section_id,
        type=PlaceholderType(record.placeholder_type),
        description=record.description,
        suggested_sources=list(record.suggested_sources or []),
        position=PlaceholderPosition(start=record.position_start, end=record.position_end),
        resolved=record.resolved,
        resolved_value=record.resolved_value,
        resolved_by=record.resolved_by,
        resolved_at=record.resolved_at,
    )


class PlaceholderService:
    """Scans proposal sections for placeholders and tracks their resolution."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = PlaceholderRepository(session)
        self.proposal_repo = ProposalRepository(session)
        self.section_repo = SectionRepository(session)

    @staticmethod
    def _record_fields(section_id: UUID, placeholder: Placeholder, previous) -> dict:
        fields = {
            "section_id": section_id,
            "token_id": placeholder.id,
            "placeholder_type": placeholder.type.value,
            "description": placeholder.description,
            "suggested_sources": placeholder.suggested_sources,
            "position_start": placeholder.position.start,
            "position_end": placeholder.position.end,
            "resolved": False,
        }
        if previous is not None:
            fields.update(
                resolved=True,
                resolved_value=previous.resolved_value,
                resolved_by=previous.resolved_by,
                resolved_at=previous.resolved_at,
            )
        return fields

    async def scan_and_persist(self, proposal_id: UUID) -> PlaceholderSummary:
        """Re-detect placeholders in every section and replace stored records.

        Args:
            proposal_id: Proposal to scan

        Returns:
            PlaceholderSummary of the freshly stored placeholders

        Raises:
            ProposalNotFoundError: If the proposal does not exist
        """
        proposal = await self.proposal_repo.get_by_id(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(f"Proposal not found: {proposal_id}")

        sections = await self.section_repo.get_by_proposal(proposal_id)
        # Token ids are content-derived, so a resolution survives re-scans
        # for as long as its token is still in the section
        resolutions = {
            (r.section_id, r.token_id): r
            for r in await self.repository.get_by_proposal(proposal_id)
            if r.resolved
        }
        found: List[Placeholder] = []
        try:
            for section in sections:
                detected = detect_placeholders(section.content or "")
                await self.repository.delete_by_section(section.id)
                rows = await self.repository.bulk_create([
                    self._record_fields(section.id, p, resolutions.get((section.id, p.id)))
                    for p in detected
                ])
                found.extend(placeholder_from_record(row) for row in rows)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        summary = build_placeholder_summary(found)
        LOGGER.info(
            "Scanned proposal placeholders",
            extra={
                "proposal_id": str(proposal_id),
                "sections": len(sections),
                "total": summary.total,
                "blocking": summary.by_type[PlaceholderType.MISSING_DATA.value]
                + summary.by_type[PlaceholderType.USER_INPUT_REQUIRED.value],
            }
        )
        return summary

    async def get_placeholder_summary(self, proposal_id: UUID) -> PlaceholderSummary:
        records = await self.repository.get_by_proposal(proposal_id)
        return build_placeholder_summary([placeholder_from_record(r) for r in records])

    async def get_blocking_placeholders(self, proposal_id: UUID) -> List[Placeholder]:
        summary = await self.get_placeholder_summary(proposal_id)
        return [p for p in summary.placeholders if not p.resolved and p.type in BLOCKING_TYPES]

    async def resolve_placeholder(self, placeholder_id: UUID, value: str, user_id: str) -> Placeholder:
        """Record the user's value for a placeholder.

        Raises:
            PlaceholderNotFoundError: If no placeholder record has that ID
        """
        try:
            record = await self.repository.mark_resolved(placeholder_id, value, user_id)
            if record is None:
                raise PlaceholderNotFoundError(f"Placeholder {placeholder_id} not found")
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        LOGGER.info(
            "Resolved placeholder",
            extra={"placeholder_id": str(placeholder_id), "user_id": user_id}
        )
        return placeholder_from_record(record)

    def count_blocking_placeholders(self, content: str) -> int:
        return count_blocking_placeholders(content)
