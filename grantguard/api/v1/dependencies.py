"""Shared FastAPI dependencies for enforcement endpoints.

Collaborators are built from settings on each request. Tests replace them
through ``app.dependency_overrides``.
"""

from typing import Optional

from grantguard.core.config import settings
from grantguard.services.collaborators import (
    ChatCompleter,
    Retriever,
    build_completer,
    build_enhancer_completer,
    build_retriever,
)
from grantguard.services.enforcement.thresholds import EnforcementThresholds


def get_thresholds() -> EnforcementThresholds:
    """Thresholds for the configured preset and overrides."""
    return EnforcementThresholds.from_settings(settings.enforcement)


def get_retriever() -> Retriever:
    return build_retriever()


def get_completer() -> Optional[ChatCompleter]:
    """Completer whose failures propagate, used for section drafting."""
    return build_completer()


def get_enhancer_completer() -> Optional[ChatCompleter]:
    """Graceful completer for optional LLM passes."""
    return build_enhancer_completer()
