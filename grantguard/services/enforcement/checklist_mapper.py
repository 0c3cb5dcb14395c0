"""RFP checklist items and their mapping to proposal sections.

Items are matched to sections by the Jaccard index of their name words,
after expanding both names with common section aliases. Manual mappings
always win: auto-mapping never touches an item a user has mapped.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.core.exceptions import (
    ChecklistItemNotFoundError,
    ProposalNotFoundError,
    SectionNotFoundError,
    ValidationError,
)
from grantguard.repositories.checklist_repository import ChecklistItemRepository, ChecklistMappingRepository
from grantguard.repositories.proposal_repository import ProposalRepository, SectionRepository
from grantguard.schemas.enforcement import (
    ChecklistCounts,
    ChecklistItemState,
    ChecklistItemStatus,
    ChecklistMapping,
    ChecklistMappingType,
    ChecklistStatus,
    ChecklistValidation,
    LowConfidenceMapping,
    MappedSection,
)
from grantguard.schemas.requests import ChecklistItemInput
from grantguard.services.enforcement.compliance_checker import section_name_variants
from grantguard.utils.logging import get_logger
from grantguard.utils.text import strip_html

LOGGER = get_logger(__name__)

# Auto mappings need a similarity strictly above this
MIN_AUTO_MAP_CONFIDENCE = 0.3
# Mappings below this are surfaced for review
REVIEW_CONFIDENCE = 0.6
MANUAL_CONFIDENCE = 1.0
UNKNOWN_SECTION = "Unknown"

SECTION_ALIASES: Dict[str, List[str]] = {
    "executive summary": ["summary", "overview", "abstract"],
    "statement of need": ["need statement", "problem statement", "needs assessment", "community need"],
    "project description": ["project narrative", "methodology", "approach", "methods", "program description"],
    "goals and objectives": ["goals", "objectives", "outcomes", "expected outcomes"],
    "evaluation plan": ["evaluation", "assessment", "measurement", "metrics"],
    "organizational background": [
        "organization background", "org background", "about us", "organizational capacity",
    ],
    "budget narrative": ["budget justification", "budget explanation", "budget description"],
    "sustainability plan": ["sustainability", "future funding", "continuation plan"],
    "timeline": ["project timeline", "schedule", "work plan", "implementation timeline"],
}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def _name_words(name: str) -> set:
    return {w for w in _NON_ALNUM_RE.sub("", name.lower()).split() if len(w) > 2}


def name_similarity(first: str, second: str) -> float:
    """Jaccard index of the words longer than two characters."""
    words1 = _name_words(first)
    words2 = _name_words(second)
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def expanded_names(name: str) -> List[str]:
    """Name variants plus every alias group the name belongs to."""
    variants = section_name_variants(name)
    spaced = variants[-1]
    names = list(dict.fromkeys(variants))
    for key, aliases in SECTION_ALIASES.items():
        if key in spaced or any(alias in spaced for alias in aliases):
            names.extend(n for n in (key, *aliases) if n not in names)
    return names


def best_section_match(item_name: str, sections: Sequence[Any]) -> Optional[Tuple[Any, float]]:
    """Section whose name best matches a checklist item.

    Returns:
        (section, confidence), or None when no section scores above
        MIN_AUTO_MAP_CONFIDENCE. The first section wins ties.
    """
    item_names = expanded_names(item_name)
    best: Optional[Tuple[Any, float]] = None
    for section in sections:
        section_names = expanded_names(section.section_name)
        similarity = max(name_similarity(i, s) for i in item_names for s in section_names)
        if similarity > MIN_AUTO_MAP_CONFIDENCE and (best is None or similarity > best[1]):
            best = (section, similarity)
    return best


def section_has_content(section) -> bool:
    return section is not None and bool(strip_html(section.content or "").strip())


def items_from_requirements(parsed_requirements: Optional[Dict[str, Any]]) -> List[ChecklistItemInput]:
    """Checklist items for the ``sections`` of parsed RFP requirements."""
    if not isinstance(parsed_requirements, dict):
        return []
    items = []
    for entry in parsed_requirements.get("sections") or []:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name", "")).strip()
        if not name:
            continue
        items.append(ChecklistItemInput(
            name=name,
            description=entry.get("description"),
            is_required=bool(entry.get("is_required", entry.get("isRequired", True))),
            word_limit=entry.get("word_limit") or entry.get("wordLimit") or None,
            char_limit=entry.get("char_limit") or entry.get("charLimit") or None,
        ))
    return items


def _group_mappings(mappings: Iterable[Any]) -> Dict[UUID, List[Any]]:
    grouped: Dict[UUID, List[Any]] = {}
    for mapping in mappings:
        grouped.setdefault(mapping.checklist_item_id, []).append(mapping)
    return grouped


def validate_checklist(items: Sequence[Any], mappings: Sequence[Any], sections: Sequence[Any]) -> ChecklistValidation:
    """Whether every required checklist item is answered by a section with content.

    Args:
        items: Checklist item rows
        mappings: Mapping rows for those items
        sections: Section rows of the proposal

    Returns:
        ChecklistValidation; low-confidence mappings only count when the
        mapped section has content
    """
    by_item = _group_mappings(mappings)
    section_map = {s.id: s for s in sections}

    missing_required: List[str] = []
    unmapped: List[str] = []
    low_confidence: List[LowConfidenceMapping] = []
    for item in items:
        item_mappings = by_item.get(item.id, [])
        if not item_mappings:
            unmapped.append(item.name)
            if item.is_required:
                missing_required.append(item.name)
            continue

        answered = False
        for mapping in item_mappings:
            section = section_map.get(mapping.section_id)
            if not section_has_content(section):
                continue
            answered = True
            if (
                mapping.mapping_type == ChecklistMappingType.AUTO.value
                and mapping.confidence
                and mapping.confidence < REVIEW_CONFIDENCE
            ):
                low_confidence.append(LowConfidenceMapping(
                    item_name=item.name,
                    section_name=section.section_name,
                    confidence=mapping.confidence,
                ))

        if not answered and item.is_required:
            missing_required.append(item.name)

    return ChecklistValidation(
        valid=not missing_required,
        missing_required=missing_required,
        unmapped_items=unmapped,
        low_confidence_mappings=low_confidence,
    )


def _item_status(mapped: Sequence[MappedSection]) -> ChecklistItemStatus:
    if not mapped:
        return ChecklistItemStatus.UNMAPPED
    if any(m.confidence is not None and m.confidence < REVIEW_CONFIDENCE for m in mapped):
        return ChecklistItemStatus.NEEDS_REVIEW
    if any(m.has_content for m in mapped):
        return ChecklistItemStatus.COMPLETE
    return ChecklistItemStatus.INCOMPLETE


def build_checklist_status(
    proposal_id: UUID,
    items: Sequence[Any],
    mappings: Sequence[Any],
    sections: Sequence[Any],
) -> ChecklistStatus:
    """Per-item status with the sections each item is mapped to.

    UNMAPPED items count as incomplete in the summary.
    """
    by_item = _group_mappings(mappings)
    section_map = {s.id: s for s in sections}

    states = []
    for item in items:
        mapped = []
        for mapping in by_item.get(item.id, []):
            section = section_map.get(mapping.section_id)
            mapped.append(MappedSection(
                id=mapping.section_id,
                name=section.section_name if section is not None else UNKNOWN_SECTION,
                has_content=section_has_content(section),
                confidence=mapping.confidence,
            ))
        states.append(ChecklistItemState(
            id=item.id,
            name=item.name,
            is_required=item.is_required,
            status=_item_status(mapped),
            mapped_sections=mapped,
        ))

    counts = ChecklistCounts(
        total=len(states),
        complete=sum(1 for s in states if s.status == ChecklistItemStatus.COMPLETE),
        incomplete=sum(
            1 for s in states
            if s.status in (ChecklistItemStatus.INCOMPLETE, ChecklistItemStatus.UNMAPPED)
        ),
        needs_review=sum(1 for s in states if s.status == ChecklistItemStatus.NEEDS_REVIEW),
    )
    return ChecklistStatus(proposal_id=proposal_id, items=states, summary=counts)


class ChecklistMapper:
    """Stores a proposal's RFP checklist and maps its items to sections."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.item_repo = ChecklistItemRepository(session)
        self.mapping_repo = ChecklistMappingRepository(session)
        self.proposal_repo = ProposalRepository(session)
        self.section_repo = SectionRepository(session)

    async def _require_proposal(self, proposal_id: UUID):
        proposal = await self.proposal_repo.get_by_id(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(f"Proposal not found: {proposal_id}")
        return proposal

    async def _load(self, proposal_id: UUID):
        await self._require_proposal(proposal_id)
        items = await self.item_repo.get_by_proposal(proposal_id)
        mappings = await self.mapping_repo.get_by_proposal(proposal_id)
        sections = await self.section_repo.get_by_proposal(proposal_id)
        return items, mappings, sections

    async def create_checklist(
        self,
        proposal_id: UUID,
        items: Optional[Sequence[ChecklistItemInput]] = None,
    ) -> ChecklistStatus:
        """Replace the proposal's checklist.

        Args:
            proposal_id: Proposal the checklist belongs to
            items: Items in RFP order; defaults to the parsed RFP sections

        Returns:
            ChecklistStatus of the new, still unmapped checklist

        Raises:
            ProposalNotFoundError: If the proposal does not exist
        """
        proposal = await self._require_proposal(proposal_id)
        if items is None:
            items = items_from_requirements(proposal.parsed_requirements)

        try:
            await self.item_repo.delete_by_proposal(proposal_id)
            rows = await self.item_repo.bulk_create([
                {"proposal_id": proposal_id, "order_index": index, **item.model_dump()}
                for index, item in enumerate(items)
            ])
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        LOGGER.info(
            "Created proposal checklist",
            extra={"proposal_id": str(proposal_id), "items": len(rows)}
        )
        return build_checklist_status(proposal_id, rows, [], [])

    async def auto_map_sections(self, proposal_id: UUID) -> List[ChecklistMapping]:
        """Map every item without a manual mapping to its best-matching section.

        An item's previous AUTO mappings are replaced, so re-running after
        sections are renamed leaves no stale links.

        Raises:
            ProposalNotFoundError: If the proposal does not exist
        """
        items, mappings, sections = await self._load(proposal_id)
        by_item = _group_mappings(mappings)

        results: List[ChecklistMapping] = []
        try:
            for item in items:
                if any(m.mapping_type == ChecklistMappingType.MANUAL.value for m in by_item.get(item.id, [])):
                    continue
                await self.mapping_repo.delete_auto_mappings(item.id)
                match = best_section_match(item.name, sections)
                if match is None:
                    continue
                section, confidence = match
                await self.mapping_repo.create(
                    checklist_item_id=item.id,
                    section_id=section.id,
                    mapping_type=ChecklistMappingType.AUTO.value,
                    confidence=confidence,
                )
                results.append(ChecklistMapping(
                    checklist_item_id=item.id,
                    section_id=section.id,
                    confidence=confidence,
                    mapping_type=ChecklistMappingType.AUTO,
                ))
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        LOGGER.info(
            "Auto-mapped checklist items",
            extra={"proposal_id": str(proposal_id), "items": len(items), "mapped": len(results)}
        )
        return results

    async def map_section_manually(self, checklist_item_id: UUID, section_id: UUID) -> ChecklistMapping:
        """Map an item to a section chosen by the user, dropping its AUTO mappings.

        Raises:
            ChecklistItemNotFoundError: If the item does not exist
            SectionNotFoundError: If the section does not exist
            ValidationError: If the section belongs to another proposal
        """
        item = await self.item_repo.get_by_id(checklist_item_id)
        if item is None:
            raise ChecklistItemNotFoundError(f"Checklist item {checklist_item_id} not found")
        section = await self.section_repo.get_by_id(section_id)
        if section is None:
            raise SectionNotFoundError(f"Section not found: {section_id}")
        if section.proposal_id != item.proposal_id:
            raise ValidationError(
                f"Section {section_id} does not belong to the proposal of checklist item {checklist_item_id}"
            )

        try:
            await self.mapping_repo.delete_auto_mappings(checklist_item_id)
            await self.mapping_repo.upsert(
                checklist_item_id,
                section_id,
                mapping_type=ChecklistMappingType.MANUAL.value,
                confidence=MANUAL_CONFIDENCE,
            )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        LOGGER.info(
            "Manually mapped checklist item",
            extra={"checklist_item_id": str(checklist_item_id), "section_id": str(section_id)}
        )
        return ChecklistMapping(
            checklist_item_id=checklist_item_id,
            section_id=section_id,
            confidence=MANUAL_CONFIDENCE,
            mapping_type=ChecklistMappingType.MANUAL,
        )

    async def validate_checklist_completion(self, proposal_id: UUID) -> ChecklistValidation:
        items, mappings, sections = await self._load(proposal_id)
        validation = validate_checklist(items, mappings, sections)
        LOGGER.info(
            "Validated proposal checklist",
            extra={
                "proposal_id": str(proposal_id),
                "valid": validation.valid,
                "missing_required": len(validation.missing_required),
            }
        )
        return validation

    async def get_checklist_status(self, proposal_id: UUID) -> ChecklistStatus:
        items, mappings, sections = await self._load(proposal_id)
        return build_checklist_status(proposal_id, items, mappings, sections)
