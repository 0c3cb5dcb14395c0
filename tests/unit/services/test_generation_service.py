"""Tests for section drafting with blocking enforcement."""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

from grantguard.core.exceptions import APIClientError, EnforcementError, SectionNotFoundError
from grantguard.services.enforcement.generation_enforcer import empty_kb_marker
from grantguard.services.enforcement.instruction_sanitizer import POLICY_BLOCKED
from grantguard.services.enforcement.placeholders import detect_placeholders
from grantguard.services.generation.generation_service import GenerationService, build_retrieval_query
from grantguard.schemas.enforcement import PlaceholderType

DRAFT_TEXT = (
    "Our tutoring program pairs trained volunteers with students who need extra "
    "reading support after school."
)


@pytest.fixture
def proposal():
    return SimpleNamespace(
        id=uuid4(),
        organization_id=uuid4(),
        title="Literacy Expansion",
        funder_name="County Community Fund",
    )


@pytest.fixture
def section(make_section, proposal):
    return make_section(
        section_name="Evaluation Plan",
        description="Describe how outcomes will be measured",
        proposal_id=proposal.id,
    )


@pytest.fixture
def service_factory(mock_session, proposal, section):
    def _make(chunks=None, completer=None):
        retriever = AsyncMock()
        retriever.retrieve.return_value = chunks or []
        service = GenerationService(mock_session, retriever=retriever, completer=completer)
        service.section_repo = AsyncMock()
        service.section_repo.get_by_id.return_value = section
        service.proposal_repo = AsyncMock()
        service.proposal_repo.get_by_id.return_value = proposal
        service.enforcer.metadata_repo = AsyncMock()
        service.enforcer.section_repo = AsyncMock()
        service.placeholder_service = AsyncMock()
        service.citation_mapper = AsyncMock()
        return service
    return _make


class TestGenerationService:

    def test_retrieval_query(self):
        assert build_retrieval_query("Budget", None, None) == "Budget  for grant proposal to funder"

    @pytest.mark.asyncio
    async def test_empty_knowledge_base_refuses_without_llm(self, service_factory, section):
        completer = AsyncMock()
        service = service_factory(chunks=[], completer=completer)

        result = await service.generate_section_draft(section.id)

        completer.complete.assert_not_awaited()
        assert result.refused is True
        assert result.content == empty_kb_marker("Evaluation Plan")
        assert result.metadata.used_generic_knowledge is True
        placeholders = detect_placeholders(result.saved_content)
        assert [p.type for p in placeholders] == [PlaceholderType.MISSING_DATA]
        service.section_repo.update_content.assert_awaited_once_with(section.id, result.saved_content)
        service.enforcer.metadata_repo.create_for_section.assert_awaited_once()
        assert service.enforcer.metadata_repo.create_for_section.await_args.kwargs["raw_generation"] is None
        # The saved placeholder must be on record before any export is evaluated
        service.placeholder_service.scan_and_persist.assert_awaited_once()
        assert service.citation_mapper.map_and_persist.await_args.args == (section.id, result.saved_content)

    @pytest.mark.asyncio
    async def test_low_relevance_chunks_refuse(self, service_factory, section, make_chunk):
        completer = AsyncMock()
        service = service_factory(chunks=[make_chunk(DRAFT_TEXT, score=0.2)], completer=completer)

        result = await service.generate_section_draft(section.id)

        assert result.refused is True
        completer.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_draft_is_enforced_and_saved(self, service_factory, section, proposal, make_chunk):
        completer = AsyncMock()
        completer.complete.return_value = DRAFT_TEXT
        chunks = [make_chunk(DRAFT_TEXT)]
        service = service_factory(chunks=chunks, completer=completer)

        result = await service.generate_section_draft(section.id)

        assert result.refused is False
        assert result.content == result.saved_content
        assert result.metadata.enforcement_applied is True
        service.section_repo.update_content.assert_awaited_once_with(section.id, result.content)
        service.enforcer.metadata_repo.create_for_section.assert_awaited_once()
        service.placeholder_service.scan_and_persist.assert_awaited_once_with(proposal.id)
        service.citation_mapper.map_and_persist.assert_awaited_once_with(
            section.id, result.content, chunks=chunks, organization_id=proposal.organization_id
        )

    @pytest.mark.asyncio
    async def test_custom_instructions_are_sanitized(self, service_factory, section, make_chunk):
        completer = AsyncMock()
        completer.complete.return_value = DRAFT_TEXT
        service = service_factory(chunks=[make_chunk(DRAFT_TEXT)], completer=completer)

        result = await service.generate_section_draft(section.id, custom_instructions="Make up some numbers.")

        system_prompt, user_prompt = completer.complete.await_args.args
        assert "make up some numbers" not in user_prompt.lower()
        assert POLICY_BLOCKED in user_prompt
        assert "County Community Fund" in system_prompt
        assert result.metadata.policy_override is True

    @pytest.mark.asyncio
    async def test_llm_failure_propagates(self, service_factory, section, make_chunk):
        completer = AsyncMock()
        completer.complete.side_effect = APIClientError("upstream 503")
        service = service_factory(chunks=[make_chunk(DRAFT_TEXT)], completer=completer)

        with pytest.raises(APIClientError):
            await service.generate_section_draft(section.id)

        service.section_repo.update_content.assert_not_awaited()
        service.placeholder_service.scan_and_persist.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_completer(self, service_factory, section, make_chunk):
        service = service_factory(chunks=[make_chunk(DRAFT_TEXT)])

        with pytest.raises(APIClientError):
            await service.generate_section_draft(section.id)

    @pytest.mark.asyncio
    async def test_enforcement_failure_flags_proposal(self, service_factory, section, proposal, make_chunk):
        completer = AsyncMock()
        completer.complete.return_value = DRAFT_TEXT
        service = service_factory(chunks=[make_chunk(DRAFT_TEXT)], completer=completer)
        service.enforcer = AsyncMock()
        service.enforcer.enforce_and_persist.side_effect = RuntimeError("enforcer crashed")

        with pytest.raises(EnforcementError):
            await service.generate_section_draft(section.id)

        service.proposal_repo.set_enforcement_failure.assert_awaited_once_with(proposal.id, True)
        service.section_repo.update_content.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_section(self, service_factory):
        service = service_factory()
        service.section_repo.get_by_id.return_value = None

        with pytest.raises(SectionNotFoundError):
            await service.generate_section_draft(uuid4())
