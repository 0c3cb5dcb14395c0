"""Section generation package."""

from grantguard.services.generation.generation_service import GenerationService

__all__ = ["GenerationService"]
