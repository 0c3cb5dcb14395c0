"""Exceptions raised by grantguard services.

Each ``NotFoundError`` subclass maps to HTTP 404 and ``ValidationError`` to
422. ``APIClientError`` (retriever or LLM) maps to 502. ``EnforcementError``
maps to 500 and marks the proposal as not exportable.
"""


class AppError(Exception):
    """Base exception for application errors."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class APIClientError(AppError):
    """A collaborator HTTP call (retrieval or chat completion) failed."""


class APITimeoutError(APIClientError):
    pass


class ValidationError(AppError):
    """Request input that passed schema validation but is unusable."""


class ConfigurationError(AppError):
    """Unknown threshold preset or inconsistent enforcement settings."""


class EnforcementError(AppError):
    """Generation-time enforcement could not complete.

    The generated draft is discarded and never saved unenforced.
    """


class NotFoundError(AppError):
    pass


class ProposalNotFoundError(NotFoundError):
    pass


class SectionNotFoundError(NotFoundError):
    pass


class PlaceholderNotFoundError(NotFoundError):
    pass


class AmbiguityNotFoundError(NotFoundError):
    pass


class AuditRecordNotFoundError(NotFoundError):
    pass


class ChecklistItemNotFoundError(NotFoundError):
    pass
