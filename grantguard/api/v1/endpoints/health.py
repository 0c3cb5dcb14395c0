"""Liveness probe for the enforcement service."""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from grantguard.core.config import settings
from grantguard.core.database import db_client

router = APIRouter()


class HealthCheckResponse(BaseModel):
    status: str = Field(..., description="healthy, or degraded when the enforcement store is unusable")
    version: str
    service: str
    enforcement_preset: str = Field(..., description="Threshold preset in effect")
    generation_available: bool = Field(..., description="Whether an LLM key is configured")
    database: dict = Field(default_factory=dict)


@router.get(
    "/",
    response_model=HealthCheckResponse,
    tags=["Health"],
    summary="Service health",
    operation_id="get_service_health_status",
)
async def health_check() -> HealthCheckResponse:
    # The gate fails closed without its store, so a bad database is reported, not hidden
    db_health = await db_client.health_check()

    return HealthCheckResponse(
        status="healthy" if db_health["status"] == "healthy" else "degraded",
        version=settings.app_version,
        service=settings.app_name,
        enforcement_preset=settings.enforcement.preset,
        generation_available=bool(settings.llm.openrouter_api_key),
        database=db_health,
    )
