"""
Error taxonomy for the retrieval core.

Local validation errors (EmptyInputError, QueryTooLongError) and
ConfigurationError are raised before any network call is attempted.
CollaboratorUnavailableError wraps every failure of an external
collaborator (embedding model, index, classifier, search, generator).
"""

from typing import Optional


class RAGError(Exception):
    """Base class for all retrieval core errors."""
    pass


class EmptyInputError(RAGError, ValueError):
    """Raised when text input is empty or whitespace-only."""

    def __init__(self, what: str = "text"):
        super().__init__(f"{what} cannot be empty")
        self.what = what


class QueryTooLongError(RAGError, ValueError):
    """Raised when a query exceeds the hard character ceiling."""

    def __init__(self, length: int, limit: int):
        super().__init__(f"Query too long ({length} chars, max {limit})")
        self.length = length
        self.limit = limit


class CollaboratorUnavailableError(RAGError):
    """An external collaborator call failed (timeout, quota, malformed response)."""

    def __init__(self, collaborator: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{collaborator} unavailable: {message}")
        self.collaborator = collaborator
        self.cause = cause


class ConfigurationError(RAGError):
    """Invalid configuration: dimension mismatch, unknown provider, missing collaborator."""
    pass
