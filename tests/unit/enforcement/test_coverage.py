"""Tests for citation mapping and coverage aggregation."""

import gc

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

from grantguard.core.exceptions import SectionNotFoundError
from grantguard.schemas.enforcement import AttributionFlag, AttributionStatus, SectionCoverage
from grantguard.services.enforcement.citation_mapper import (
    _SECTION_LOCKS,
    CitationMapper,
    attribute_paragraph,
    compute_section_coverage,
    find_best_matching_span,
    section_lock,
    split_attribution_paragraphs,
)
from grantguard.services.enforcement.coverage_scorer import CoverageScorer, compute_overall_coverage

GROUNDED_TEXT = "Our after school tutoring program served local students across three neighborhood centers."
UNRELATED_TEXT = "Volcanic eruptions reshape island coastlines through sudden lava flows overnight."


@pytest.fixture
def mapper(mock_session, make_section):
    section = make_section(section_name="Program Design")
    mapper = CitationMapper(mock_session)
    mapper.section_repo = AsyncMock()
    mapper.section_repo.get_by_id.return_value = section
    mapper.paragraph_repo = AsyncMock()
    mapper.paragraph_repo.bulk_create.side_effect = lambda rows: [SimpleNamespace(id=uuid4()) for _ in rows]
    mapper.coverage_repo = AsyncMock()
    mapper.section = section
    return mapper


class TestParagraphAttribution:

    def test_split_drops_short_and_html(self):
        content = "<p>Our program serves youth daily.</p><p>Short one.</p><p>Another full paragraph here.</p>"

        assert split_attribution_paragraphs(content) == [
            "Our program serves youth daily.",
            "Another full paragraph here.",
        ]

    def test_grounded_paragraph(self, make_chunk):
        result = attribute_paragraph(GROUNDED_TEXT, 0, uuid4(), [make_chunk(GROUNDED_TEXT)])

        assert result.status == AttributionStatus.GROUNDED
        assert result.attribution_score == pytest.approx(1.0)
        assert result.supporting_chunks[0].document_name == "annual_report.pdf"
        assert result.flags == []

    def test_ungrounded_paragraph(self, make_chunk):
        result = attribute_paragraph(UNRELATED_TEXT, 0, uuid4(), [make_chunk(GROUNDED_TEXT)])

        assert result.status == AttributionStatus.UNGROUNDED
        assert result.supporting_chunks == []
        assert AttributionFlag.NO_SOURCE in result.flags

    def test_supporting_chunks_capped(self, make_chunk):
        chunks = [make_chunk(GROUNDED_TEXT, document_id=f"doc-{i}") for i in range(5)]

        result = attribute_paragraph(GROUNDED_TEXT, 0, uuid4(), chunks)

        assert len(result.supporting_chunks) == 3

    def test_matched_span_falls_back_to_chunk_start(self):
        assert find_best_matching_span("nothing in common", "abc" * 50) == ("abc" * 50)[:100] + "..."


class TestSectionCoverage:

    def test_partial_counts_half(self):
        section_id = uuid4()
        paragraphs = [
            attribute_paragraph(GROUNDED_TEXT, 0, section_id, []),
        ]
        paragraphs = [
            paragraphs[0].model_copy(update={"status": AttributionStatus.GROUNDED}),
            paragraphs[0].model_copy(update={"status": AttributionStatus.PARTIAL}),
            paragraphs[0].model_copy(update={"status": AttributionStatus.FAILED}),
            paragraphs[0].model_copy(update={"status": AttributionStatus.UNGROUNDED}),
        ]

        coverage = compute_section_coverage(section_id, "Budget", paragraphs)

        assert coverage.coverage_score == 38
        assert coverage.grounded_count == 1
        assert coverage.partial_count == 1
        assert coverage.ungrounded_count == 2

    def test_empty_section(self):
        coverage = compute_section_coverage(uuid4(), "Budget", [])

        assert coverage.coverage_score == 0
        assert coverage.total_paragraphs == 0


class TestCitationMapper:

    @pytest.mark.asyncio
    async def test_mapping_is_idempotent(self, mapper, make_chunk):
        content = f"{GROUNDED_TEXT}\n\n{UNRELATED_TEXT}"
        chunks = [make_chunk(GROUNDED_TEXT)]

        first = await mapper.map_and_persist(mapper.section.id, content, chunks=chunks)
        second = await mapper.map_and_persist(mapper.section.id, content, chunks=chunks)

        first_cov = first.section_coverage.model_dump(exclude={"computed_at"})
        second_cov = second.section_coverage.model_dump(exclude={"computed_at"})
        assert first_cov == second_cov
        assert first.section_coverage.coverage_score == 50
        assert [p.status for p in first.paragraphs] == [p.status for p in second.paragraphs]
        assert mapper.paragraph_repo.delete_by_section.await_count == 2
        assert mapper.coverage_repo.upsert.await_count == 2
        assert all(p.id is not None for p in second.paragraphs)

    @pytest.mark.asyncio
    async def test_no_sources_marks_failed(self, mapper):
        result = await mapper.map_and_persist(mapper.section.id, GROUNDED_TEXT)

        assert [p.status for p in result.paragraphs] == [AttributionStatus.FAILED]
        assert AttributionFlag.ATTRIBUTION_FAILED in result.paragraphs[0].flags
        assert result.section_coverage.coverage_score == 0

    @pytest.mark.asyncio
    async def test_uses_retriever_when_no_chunks(self, mapper, make_chunk):
        retriever = AsyncMock()
        retriever.retrieve.return_value = [make_chunk(GROUNDED_TEXT)]
        mapper.retriever = retriever

        result = await mapper.map_citations(mapper.section.id, GROUNDED_TEXT, organization_id=uuid4())

        retriever.retrieve.assert_awaited_once()
        assert result.paragraphs[0].status == AttributionStatus.GROUNDED

    def test_section_lock_shared_while_held(self):
        section_id = uuid4()
        lock = section_lock(section_id)

        assert section_lock(section_id) is lock

        del lock
        gc.collect()
        assert section_id not in _SECTION_LOCKS

    @pytest.mark.asyncio
    async def test_section_lock_released_after_mapping(self, mapper, make_chunk):
        await mapper.map_and_persist(mapper.section.id, GROUNDED_TEXT, chunks=[make_chunk(GROUNDED_TEXT)])
        gc.collect()

        assert mapper.section.id not in _SECTION_LOCKS

    @pytest.mark.asyncio
    async def test_missing_section(self, mapper):
        mapper.section_repo.get_by_id.return_value = None

        with pytest.raises(SectionNotFoundError):
            await mapper.map_citations(uuid4(), GROUNDED_TEXT)


def _coverage(grounded: int, partial: int, ungrounded: int, name: str = "Section") -> SectionCoverage:
    total = grounded + partial + ungrounded
    return compute_section_coverage(
        uuid4(),
        name,
        [],
    ).model_copy(update={
        "grounded_count": grounded,
        "partial_count": partial,
        "ungrounded_count": ungrounded,
        "total_paragraphs": total,
        "coverage_score": round(100 * (grounded + 0.5 * partial) / total) if total else 0,
    })


class TestOverallCoverage:

    def test_paragraph_weighted(self):
        coverage = compute_overall_coverage(
            [_coverage(4, 0, 0, "Need"), _coverage(0, 0, 1, "Budget")], uuid4()
        )

        assert coverage.overall_score == 80
        assert coverage.lowest_section.name == "Budget"
        assert coverage.lowest_section.score == 0

    def test_all_ungrounded_is_zero(self):
        coverage = compute_overall_coverage([_coverage(0, 0, 3), _coverage(0, 0, 2)], uuid4())

        assert coverage.overall_score == 0

    @pytest.mark.parametrize("counts", [(1, 0, 0), (5, 5, 0), (0, 2, 0), (3, 1, 7)])
    def test_never_above_one_hundred(self, counts):
        coverage = compute_overall_coverage([_coverage(*counts), _coverage(*counts)], uuid4())

        assert 0 <= coverage.overall_score <= 100

    def test_grounding_more_never_lowers_score(self):
        before = compute_overall_coverage([_coverage(1, 1, 2)], uuid4())
        after = compute_overall_coverage([_coverage(2, 1, 1)], uuid4())

        assert after.overall_score >= before.overall_score

    def test_no_sections(self):
        coverage = compute_overall_coverage([], uuid4())

        assert coverage.overall_score == 0
        assert coverage.lowest_section is None


class TestCoverageScorer:

    @pytest.mark.asyncio
    async def test_no_records_returns_none(self, mock_session):
        scorer = CoverageScorer(mock_session)
        scorer.coverage_repo = AsyncMock()
        scorer.coverage_repo.get_by_proposal.return_value = []

        assert await scorer.compute_proposal_coverage(uuid4()) is None

    @pytest.mark.asyncio
    async def test_recompute_skips_empty_and_survives_failures(self, mock_session, make_section):
        sections = [
            make_section(section_name="Need", content=GROUNDED_TEXT),
            make_section(section_name="Budget", content="   "),
            make_section(section_name="Staff", content=UNRELATED_TEXT),
        ]
        scorer = CoverageScorer(mock_session)
        scorer.section_repo = AsyncMock()
        scorer.section_repo.get_by_proposal.return_value = sections
        scorer.proposal_repo = AsyncMock()
        scorer.proposal_repo.get_by_id.return_value = SimpleNamespace(organization_id=uuid4())
        scorer.coverage_repo = AsyncMock()
        scorer.coverage_repo.get_by_proposal.return_value = []

        mapped = []

        async def fake_map(section_id, content, organization_id):
            mapped.append(section_id)
            if section_id == sections[2].id:
                raise RuntimeError("retrieval down")

        scorer._map_section = fake_map

        result = await scorer.recompute_all_sections(uuid4())

        assert mapped == [sections[0].id, sections[2].id]
        assert result is None
