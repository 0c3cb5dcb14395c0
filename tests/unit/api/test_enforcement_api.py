"""Tests for the enforcement API endpoints."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from fastapi.testclient import TestClient

from grantguard.api.v1.endpoints import export, generation, placeholders, requirements
from grantguard.core.database import get_async_session
from grantguard.core.exceptions import APIClientError, AuditRecordNotFoundError, ChecklistItemNotFoundError
from grantguard.main import app
from grantguard.schemas.enforcement import (
    ChecklistMapping,
    ChecklistMappingType,
    ChecklistValidation,
    EnforcementSnapshot,
    ExportAuditRecord,
    ExportDecision,
    ExportEvaluation,
    ExportFormat,
    PlaceholderSummary,
)
from grantguard.services.enforcement.export_gate import FAIL_CLOSED_RULE_ID, fail_closed_result


def _override_session():
    app.dependency_overrides[get_async_session] = lambda: AsyncMock()


def _blocked_evaluation(proposal_id) -> ExportEvaluation:
    result = fail_closed_result()
    return ExportEvaluation(
        gate_result=result,
        audit_record=ExportAuditRecord(
            id=uuid4(),
            proposal_id=proposal_id,
            user_id="user-1",
            export_format=ExportFormat.PDF,
            decision=result.decision,
            blocks=result.blocks,
            enforcement_snapshot=EnforcementSnapshot(),
            created_at=datetime.now(timezone.utc),
        ),
    )


class TestExportEndpoints:
    """Export gate endpoints return the standard envelope."""

    def test_export_gate_block_is_successful_response(self, test_client: TestClient) -> None:
        proposal_id = uuid4()
        gatekeeper = AsyncMock()
        gatekeeper.evaluate.return_value = _blocked_evaluation(proposal_id)
        app.dependency_overrides[export.get_export_gatekeeper] = lambda: gatekeeper

        response = test_client.post(
            f"/api/v1/proposals/{proposal_id}/export-gate",
            json={"user_id": "user-1", "export_format": "PDF"},
            headers={"X-Correlation-ID": "corr-123"},
        )

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "corr-123"
        body = response.json()
        assert body["status"] is True
        assert body["message"] == "Export gate decision: BLOCK"
        assert body["meta"]["api_version"] == "v1"
        assert body["data"]["gate_result"]["allowed"] is False
        assert body["data"]["gate_result"]["blocks"][0]["rule_id"] == FAIL_CLOSED_RULE_ID
        assert body["data"]["audit_record"]["decision"] == ExportDecision.BLOCK.value
        gatekeeper.evaluate.assert_awaited_once_with(proposal_id, "user-1", ExportFormat.PDF)

    def test_export_gate_requires_user(self, test_client: TestClient) -> None:
        app.dependency_overrides[export.get_export_gatekeeper] = lambda: AsyncMock()

        response = test_client.post(f"/api/v1/proposals/{uuid4()}/export-gate", json={})

        assert response.status_code == 422

    def test_attestation_unknown_audit_is_404(self, test_client: TestClient) -> None:
        gatekeeper = AsyncMock()
        gatekeeper.record_attestation.side_effect = AuditRecordNotFoundError("Export audit record not found")
        app.dependency_overrides[export.get_export_gatekeeper] = lambda: gatekeeper

        response = test_client.post(
            f"/api/v1/export-audits/{uuid4()}/attestation",
            json={"attestation_text": "I have reviewed the content."},
        )

        assert response.status_code == 404
        body = response.json()
        assert body["title"] == "Not Found"
        assert body["status"] == 404
        assert "request_id" in body

    def test_list_audits_wraps_items(self, test_client: TestClient) -> None:
        gatekeeper = AsyncMock()
        gatekeeper.list_audit_records.return_value = []
        app.dependency_overrides[export.get_export_gatekeeper] = lambda: gatekeeper

        response = test_client.get(f"/api/v1/proposals/{uuid4()}/export-audits?limit=5")

        assert response.status_code == 200
        assert response.json()["data"] == {"items": []}

    def test_list_audits_limit_bounds(self, test_client: TestClient) -> None:
        app.dependency_overrides[export.get_export_gatekeeper] = lambda: AsyncMock()

        response = test_client.get(f"/api/v1/proposals/{uuid4()}/export-audits?limit=500")

        assert response.status_code == 422


class TestRequirementEndpoints:

    def test_ambiguities_without_rfp_text_is_422(self, test_client: TestClient) -> None:
        _override_session()
        app.dependency_overrides[requirements.get_ambiguity_detector] = lambda: AsyncMock()

        with patch("grantguard.api.v1.endpoints.requirements.ProposalRepository") as repo_cls:
            repo_cls.return_value.get_by_id = AsyncMock(return_value=SimpleNamespace(rfp_text=None))
            response = test_client.post(f"/api/v1/proposals/{uuid4()}/ambiguities", json={})

        assert response.status_code == 422
        assert response.json()["title"] == "Validation Error"

    def test_ambiguities_unknown_proposal_is_404(self, test_client: TestClient) -> None:
        _override_session()
        app.dependency_overrides[requirements.get_ambiguity_detector] = lambda: AsyncMock()

        with patch("grantguard.api.v1.endpoints.requirements.ProposalRepository") as repo_cls:
            repo_cls.return_value.get_by_id = AsyncMock(return_value=None)
            response = test_client.post(
                f"/api/v1/proposals/{uuid4()}/ambiguities", json={"rfp_text": "Be brief."}
            )

        assert response.status_code == 404

    def test_checklist_auto_map_wraps_items(self, test_client: TestClient) -> None:
        proposal_id = uuid4()
        mapper = AsyncMock()
        mapper.auto_map_sections.return_value = [
            ChecklistMapping(
                checklist_item_id=uuid4(),
                section_id=uuid4(),
                confidence=0.75,
                mapping_type=ChecklistMappingType.AUTO,
            )
        ]
        app.dependency_overrides[requirements.get_checklist_mapper] = lambda: mapper

        response = test_client.post(f"/api/v1/proposals/{proposal_id}/checklist/auto-map")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Auto-mapped 1 checklist items"
        assert body["data"]["items"][0]["mapping_type"] == "AUTO"
        mapper.auto_map_sections.assert_awaited_once_with(proposal_id)

    def test_checklist_manual_mapping_unknown_item_is_404(self, test_client: TestClient) -> None:
        mapper = AsyncMock()
        mapper.map_section_manually.side_effect = ChecklistItemNotFoundError("Checklist item not found")
        app.dependency_overrides[requirements.get_checklist_mapper] = lambda: mapper

        response = test_client.put(
            f"/api/v1/checklist-items/{uuid4()}/mapping", json={"section_id": str(uuid4())}
        )

        assert response.status_code == 404

    def test_checklist_validation(self, test_client: TestClient) -> None:
        mapper = AsyncMock()
        mapper.validate_checklist_completion.return_value = ChecklistValidation(
            valid=False, missing_required=["Budget Narrative"], unmapped_items=["Budget Narrative"]
        )
        app.dependency_overrides[requirements.get_checklist_mapper] = lambda: mapper

        response = test_client.get(f"/api/v1/proposals/{uuid4()}/checklist/validation")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Checklist has missing required items"
        assert body["data"]["missing_required"] == ["Budget Narrative"]


class TestPlaceholderEndpoints:

    def test_placeholder_summary(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.get_placeholder_summary.return_value = PlaceholderSummary()
        app.dependency_overrides[placeholders.get_placeholder_service] = lambda: service

        response = test_client.get(f"/api/v1/proposals/{uuid4()}/placeholders")

        assert response.status_code == 200
        assert response.json()["data"]["total"] == 0
        assert response.json()["data"]["by_type"]["MISSING_DATA"] == 0


class TestGenerationEndpoints:

    def test_sanitize_instructions(self, test_client: TestClient) -> None:
        response = test_client.post(
            "/api/v1/instructions/sanitize", json={"text": "Please make up some numbers for this section."}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Bypass attempt removed"
        assert body["data"]["policy_override"] is True
        assert "FABRICATION" in body["data"]["blocked_patterns"]

    def test_sanitize_benign_instructions(self, test_client: TestClient) -> None:
        response = test_client.post("/api/v1/instructions/sanitize", json={"text": "Keep it warm."})

        assert response.json()["message"] == "Instructions accepted"
        assert response.json()["data"]["sanitized"] == "Keep it warm."

    def test_llm_outage_is_502(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.generate_section_draft.side_effect = APIClientError("Chat completion failed")
        app.dependency_overrides[generation.get_generation_service] = lambda: service

        response = test_client.post(f"/api/v1/sections/{uuid4()}/generate", json={})

        assert response.status_code == 502
        assert response.json()["title"] == "Upstream Service Error"


class TestHealthEndpoint:

    def test_health_reports_database(self, test_client: TestClient) -> None:
        with patch(
            "grantguard.api.v1.endpoints.health.db_client.health_check",
            new=AsyncMock(return_value={"status": "healthy"}),
        ):
            response = test_client.get("/health/")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == {"status": "healthy"}

    def test_health_degraded(self, test_client: TestClient) -> None:
        with patch(
            "grantguard.api.v1.endpoints.health.db_client.health_check",
            new=AsyncMock(return_value={"status": "unhealthy", "error": "connection refused"}),
        ):
            response = test_client.get("/health/")

        assert response.json()["status"] == "degraded"

    def test_root(self, test_client: TestClient) -> None:
        response = test_client.get("/")

        assert response.status_code == 200
        assert response.json()["health"] == "/health"
