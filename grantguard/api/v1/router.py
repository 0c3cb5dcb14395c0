from fastapi import APIRouter

from grantguard.api.v1.endpoints import claims, coverage, export, generation, placeholders, requirements

# Create API router
api_router = APIRouter()

# Include routers; paths are resource-scoped so no prefixes are added
api_router.include_router(export.router, tags=["Export"])
api_router.include_router(coverage.router, tags=["Coverage"])
api_router.include_router(claims.router, tags=["Claims"])
api_router.include_router(requirements.router, tags=["Requirements"])
api_router.include_router(placeholders.router, tags=["Placeholders"])
api_router.include_router(generation.router, tags=["Generation"])

__all__ = ["api_router"]
