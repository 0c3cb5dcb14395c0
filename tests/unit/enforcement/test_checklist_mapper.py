"""Tests for RFP checklist mapping and validation."""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from grantguard.core.exceptions import ChecklistItemNotFoundError, ProposalNotFoundError, ValidationError
from grantguard.schemas.enforcement import ChecklistItemStatus, ChecklistMappingType
from grantguard.services.enforcement.checklist_mapper import (
    ChecklistMapper,
    best_section_match,
    build_checklist_status,
    expanded_names,
    items_from_requirements,
    name_similarity,
    validate_checklist,
)


def _item(name: str, is_required: bool = True):
    return SimpleNamespace(id=uuid4(), proposal_id=uuid4(), name=name, is_required=is_required)


def _mapping(item, section, mapping_type: str = "AUTO", confidence=0.8):
    return SimpleNamespace(
        checklist_item_id=item.id,
        section_id=section.id,
        mapping_type=mapping_type,
        confidence=confidence,
    )


class TestNameMatching:

    def test_word_order_and_short_words_ignored(self):
        assert name_similarity("Statement of Need", "Need Statement") == 1.0

    def test_empty_name_scores_zero(self):
        assert name_similarity("Budget", "") == 0.0
        assert name_similarity("of a", "Budget") == 0.0

    def test_aliases_expand_names(self):
        assert "abstract" in expanded_names("Executive Summary")
        assert "project description" in expanded_names("Project_Narrative")

    def test_best_match_uses_aliases(self, make_section):
        budget = make_section(section_name="Budget Narrative")
        need = make_section(section_name="Problem Statement")

        section, confidence = best_section_match("Statement of Need", [budget, need])

        assert section is need
        assert confidence == 1.0

    def test_no_match_below_threshold(self, make_section):
        sections = [make_section(section_name="Budget Narrative")]

        assert best_section_match("Letters of Support", sections) is None

    def test_first_section_wins_tie(self, make_section):
        first = make_section(section_name="Timeline")
        second = make_section(section_name="Timeline")

        section, _ = best_section_match("Project Timeline", [first, second])

        assert section is first

    def test_items_from_parsed_requirements(self):
        items = items_from_requirements({
            "sections": [
                {"name": "Need Statement", "is_required": True, "word_limit": 500},
                {"name": "Appendix", "isRequired": False},
                {"name": "Timeline"},
                {"name": "  "},
                "not a section",
            ]
        })

        assert [i.name for i in items] == ["Need Statement", "Appendix", "Timeline"]
        assert [i.is_required for i in items] == [True, False, True]
        assert items[0].word_limit == 500
        assert items_from_requirements(None) == []


@pytest.fixture
def checklist(make_section):
    """Five items covering every item status."""
    sections = SimpleNamespace(
        need=make_section(section_name="Need Statement", content="<p>Our county has rising need.</p>"),
        evaluation=make_section(section_name="Evaluation", content="<p></p>"),
        timeline=make_section(section_name="Timeline", content="Months 1-12: launch and serve."),
    )
    items = SimpleNamespace(
        need=_item("Statement of Need"),
        budget=_item("Budget Narrative"),
        appendix=_item("Appendix", is_required=False),
        evaluation=_item("Evaluation Plan"),
        timeline=_item("Timeline"),
    )
    mappings = [
        _mapping(items.need, sections.need, confidence=0.5),
        _mapping(items.evaluation, sections.evaluation, "MANUAL", 1.0),
        _mapping(items.timeline, sections.timeline, confidence=0.8),
    ]
    return SimpleNamespace(
        items=items,
        item_rows=[items.need, items.budget, items.appendix, items.evaluation, items.timeline],
        mappings=mappings,
        section_rows=[sections.need, sections.evaluation, sections.timeline],
    )


class TestChecklistValidation:

    def test_missing_unmapped_and_low_confidence(self, checklist):
        result = validate_checklist(checklist.item_rows, checklist.mappings, checklist.section_rows)

        assert result.valid is False
        # Evaluation Plan is mapped, but only to a section without text
        assert result.missing_required == ["Budget Narrative", "Evaluation Plan"]
        assert result.unmapped_items == ["Budget Narrative", "Appendix"]
        assert [(m.item_name, m.section_name, m.confidence) for m in result.low_confidence_mappings] == [
            ("Statement of Need", "Need Statement", 0.5)
        ]

    def test_valid_when_required_items_answered(self, checklist):
        items = [checklist.items.need, checklist.items.appendix, checklist.items.timeline]

        result = validate_checklist(items, checklist.mappings, checklist.section_rows)

        assert result.valid is True
        assert result.unmapped_items == ["Appendix"]

    def test_empty_checklist_is_valid(self):
        assert validate_checklist([], [], []).valid is True


class TestChecklistStatus:

    def test_item_statuses_and_counts(self, checklist):
        proposal_id = uuid4()

        status = build_checklist_status(proposal_id, checklist.item_rows, checklist.mappings, checklist.section_rows)

        assert [i.status for i in status.items] == [
            ChecklistItemStatus.NEEDS_REVIEW,
            ChecklistItemStatus.UNMAPPED,
            ChecklistItemStatus.UNMAPPED,
            ChecklistItemStatus.INCOMPLETE,
            ChecklistItemStatus.COMPLETE,
        ]
        assert status.summary.total == 5
        assert status.summary.complete == 1
        assert status.summary.incomplete == 3
        assert status.summary.needs_review == 1
        assert status.items[0].mapped_sections[0].name == "Need Statement"
        assert status.items[0].mapped_sections[0].has_content is True

    def test_deleted_section_is_unknown(self, make_section):
        item = _item("Timeline")
        gone = make_section(section_name="Timeline")

        status = build_checklist_status(uuid4(), [item], [_mapping(item, gone)], [])

        assert status.items[0].mapped_sections[0].name == "Unknown"
        assert status.items[0].status == ChecklistItemStatus.INCOMPLETE


class TestChecklistMapper:

    @pytest.fixture
    def mapper(self, mock_session):
        mapper = ChecklistMapper(mock_session)
        mapper.item_repo = AsyncMock()
        mapper.mapping_repo = AsyncMock()
        mapper.proposal_repo = AsyncMock()
        mapper.section_repo = AsyncMock()
        mapper.proposal_repo.get_by_id.return_value = SimpleNamespace(id=uuid4(), parsed_requirements=None)
        return mapper

    @pytest.mark.asyncio
    async def test_create_from_parsed_requirements(self, mapper, mock_session):
        proposal_id = uuid4()
        mapper.proposal_repo.get_by_id.return_value = SimpleNamespace(
            id=proposal_id,
            parsed_requirements={"sections": [{"name": "Need Statement"}, {"name": "Appendix", "is_required": False}]},
        )
        mapper.item_repo.bulk_create.side_effect = lambda rows: [SimpleNamespace(id=uuid4(), **row) for row in rows]

        status = await mapper.create_checklist(proposal_id)

        rows = mapper.item_repo.bulk_create.call_args.args[0]
        assert [(r["name"], r["order_index"], r["is_required"]) for r in rows] == [
            ("Need Statement", 0, True),
            ("Appendix", 1, False),
        ]
        assert all(i.status == ChecklistItemStatus.UNMAPPED for i in status.items)
        mapper.item_repo.delete_by_proposal.assert_awaited_once_with(proposal_id)
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_auto_map_skips_manually_mapped_items(self, mapper, mock_session, make_section):
        need_section = make_section(section_name="Need Statement")
        evaluation_section = make_section(section_name="Evaluation")
        need_item = _item("Statement of Need")
        evaluation_item = _item("Evaluation Plan")
        mapper.item_repo.get_by_proposal.return_value = [need_item, evaluation_item]
        mapper.section_repo.get_by_proposal.return_value = [need_section, evaluation_section]
        mapper.mapping_repo.get_by_proposal.return_value = [
            _mapping(evaluation_item, need_section, "MANUAL", 1.0),
        ]

        results = await mapper.auto_map_sections(uuid4())

        assert [(r.checklist_item_id, r.section_id) for r in results] == [(need_item.id, need_section.id)]
        assert results[0].confidence == 1.0
        assert results[0].mapping_type == ChecklistMappingType.AUTO
        mapper.mapping_repo.delete_auto_mappings.assert_awaited_once_with(need_item.id)
        mapper.mapping_repo.create.assert_awaited_once_with(
            checklist_item_id=need_item.id,
            section_id=need_section.id,
            mapping_type="AUTO",
            confidence=1.0,
        )
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_auto_map_clears_stale_mapping_without_match(self, mapper, make_section):
        item = _item("Letters of Support")
        mapper.item_repo.get_by_proposal.return_value = [item]
        mapper.section_repo.get_by_proposal.return_value = [make_section(section_name="Budget Narrative")]
        mapper.mapping_repo.get_by_proposal.return_value = []

        results = await mapper.auto_map_sections(uuid4())

        assert results == []
        mapper.mapping_repo.delete_auto_mappings.assert_awaited_once_with(item.id)
        mapper.mapping_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auto_map_missing_proposal(self, mapper):
        mapper.proposal_repo.get_by_id.return_value = None

        with pytest.raises(ProposalNotFoundError):
            await mapper.auto_map_sections(uuid4())

    @pytest.mark.asyncio
    async def test_manual_mapping_replaces_auto_mappings(self, mapper, mock_session, make_section):
        item = _item("Evaluation Plan")
        section = make_section(section_name="Measuring Success", proposal_id=item.proposal_id)
        mapper.item_repo.get_by_id.return_value = item
        mapper.section_repo.get_by_id.return_value = section

        mapping = await mapper.map_section_manually(item.id, section.id)

        assert mapping.mapping_type == ChecklistMappingType.MANUAL
        assert mapping.confidence == 1.0
        mapper.mapping_repo.delete_auto_mappings.assert_awaited_once_with(item.id)
        mapper.mapping_repo.upsert.assert_awaited_once_with(
            item.id, section.id, mapping_type="MANUAL", confidence=1.0
        )
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_manual_mapping_across_proposals_rejected(self, mapper, mock_session, make_section):
        item = _item("Evaluation Plan")
        mapper.item_repo.get_by_id.return_value = item
        mapper.section_repo.get_by_id.return_value = make_section(section_name="Evaluation")

        with pytest.raises(ValidationError):
            await mapper.map_section_manually(item.id, uuid4())

        mapper.mapping_repo.upsert.assert_not_awaited()
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_manual_mapping_unknown_item(self, mapper):
        mapper.item_repo.get_by_id.return_value = None

        with pytest.raises(ChecklistItemNotFoundError):
            await mapper.map_section_manually(uuid4(), uuid4())

    @pytest.mark.asyncio
    async def test_manual_mapping_rolls_back_on_database_error(self, mapper, mock_session, make_section):
        item = _item("Evaluation Plan")
        mapper.item_repo.get_by_id.return_value = item
        mapper.section_repo.get_by_id.return_value = make_section(proposal_id=item.proposal_id)
        mapper.mapping_repo.upsert.side_effect = SQLAlchemyError("connection lost")

        with pytest.raises(SQLAlchemyError):
            await mapper.map_section_manually(item.id, uuid4())

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validation_reads_stored_checklist(self, mapper, checklist):
        mapper.item_repo.get_by_proposal.return_value = checklist.item_rows
        mapper.mapping_repo.get_by_proposal.return_value = checklist.mappings
        mapper.section_repo.get_by_proposal.return_value = checklist.section_rows

        validation = await mapper.validate_checklist_completion(uuid4())

        assert validation.missing_required == ["Budget Narrative", "Evaluation Plan"]
