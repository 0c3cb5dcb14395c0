"""Tests for RFP ambiguity detection."""

import json

import pytest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

from grantguard.core.exceptions import AmbiguityNotFoundError
from grantguard.schemas.enforcement import AmbiguityType
from grantguard.services.enforcement.ambiguity_detector import (
    AmbiguityDetector,
    parse_llm_ambiguities,
)
from grantguard.services.enforcement.ambiguity_rules import (
    detect_contradictions,
    detect_deterministic,
    detect_limit_mismatch,
    detect_vague_requirements,
    find_context_for_term,
)


class TestAmbiguityRules:

    def test_contradiction(self):
        text = "Provide a brief narrative. The plan must be comprehensive."

        flags = detect_contradictions(text)

        assert len(flags) == 1
        assert flags[0].type == AmbiguityType.CONTRADICTORY
        assert flags[0].requires_user_input is True
        assert flags[0].source_texts == ["Provide a brief narrative.", "The plan must be comprehensive."]

    def test_single_term_is_not_contradiction(self):
        assert detect_contradictions("Provide a brief narrative.") == []

    def test_vague_requirement(self):
        flags = detect_vague_requirements("Applicants must show adequate staffing for the project.")

        assert len(flags) == 1
        assert flags[0].type == AmbiguityType.VAGUE
        assert '"adequate staffing"' in flags[0].description
        assert flags[0].requires_user_input is False

    def test_limit_mismatch(self):
        flag = detect_limit_mismatch("The narrative is limited to 5 pages maximum and 500 words.")

        assert flag is not None
        assert flag.type == AmbiguityType.SCOPE_UNCLEAR
        assert "(5)" in flag.description and "(500)" in flag.description

    def test_consistent_limits(self):
        assert detect_limit_mismatch("Limit: 2 pages, 800 words.") is None

    def test_context_for_missing_term(self):
        assert find_context_for_term("Nothing here.", "absent") == "absent"

    def test_empty_text(self):
        assert detect_deterministic("") == []


class TestParseLLMAmbiguities:

    def test_valid_and_malformed_items(self):
        response = json.dumps({
            "ambiguities": [
                {"type": "implicit", "description": "Match funding is implied", "requiresUserInput": True},
                {"type": "UNKNOWN", "description": "ignored"},
                {"type": "VAGUE", "description": ""},
                "not a dict",
            ]
        })

        flags = parse_llm_ambiguities(response)

        assert len(flags) == 1
        assert flags[0].type == AmbiguityType.IMPLICIT
        assert flags[0].requires_user_input is True

    def test_unparsable(self):
        assert parse_llm_ambiguities("no json here") == []


class TestAmbiguityDetector:

    @pytest.mark.asyncio
    async def test_llm_failure_keeps_rule_results(self, mock_session):
        completer = AsyncMock()
        completer.complete.side_effect = RuntimeError("rate limited")
        detector = AmbiguityDetector(mock_session, completer=completer)

        flags = await detector.detect_ambiguities("Be brief but comprehensive.")

        assert [f.type for f in flags] == [AmbiguityType.CONTRADICTORY]

    @pytest.mark.asyncio
    async def test_llm_flags_deduplicated(self, mock_session):
        text = "Be brief but comprehensive."
        rule_description = detect_contradictions(text)[0].description
        completer = AsyncMock()
        completer.complete.return_value = json.dumps({
            "ambiguities": [
                {"type": "CONTRADICTORY", "description": rule_description.upper()},
                {"type": "IMPLICIT", "description": "Letters of support seem expected"},
            ]
        })
        detector = AmbiguityDetector(mock_session, completer=completer)

        flags = await detector.detect_ambiguities(text)

        assert [f.type for f in flags] == [AmbiguityType.CONTRADICTORY, AmbiguityType.IMPLICIT]

    @pytest.mark.asyncio
    async def test_analyze_and_persist(self, mock_session):
        detector = AmbiguityDetector(mock_session)
        detector.repository = AsyncMock()
        detector.repository.bulk_create.side_effect = lambda rows: [SimpleNamespace(id=uuid4()) for _ in rows]
        proposal_id = uuid4()

        summary = await detector.analyze_and_persist(
            proposal_id, "Be brief but comprehensive. Use appropriate resources as needed."
        )

        detector.repository.delete_by_proposal.assert_awaited_once_with(proposal_id)
        assert summary.total == 3
        assert summary.unresolved == 3
        assert summary.requires_input == 1
        assert all(a.id is not None for a in summary.ambiguities)
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resolve_ambiguity(self, mock_session):
        detector = AmbiguityDetector(mock_session)
        detector.repository = AsyncMock()
        detector.repository.mark_resolved.return_value = SimpleNamespace(
            id=uuid4(),
            proposal_id=uuid4(),
            ambiguity_type="VAGUE",
            description="Vague requirement",
            source_texts=[],
            suggested_resolutions=[],
            requires_user_input=False,
            resolved=True,
            resolution="Use $50,000",
            resolved_by="user-1",
            resolved_at=datetime.now(timezone.utc),
        )

        flag = await detector.resolve_ambiguity(uuid4(), "Use $50,000", "user-1")

        assert flag.resolved is True
        assert flag.resolution == "Use $50,000"

    @pytest.mark.asyncio
    async def test_resolve_unknown_ambiguity(self, mock_session):
        detector = AmbiguityDetector(mock_session)
        detector.repository = AsyncMock()
        detector.repository.mark_resolved.return_value = None

        with pytest.raises(AmbiguityNotFoundError):
            await detector.resolve_ambiguity(uuid4(), "resolution", "user-1")
