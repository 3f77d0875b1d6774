"""Error types for aikb and the user-facing messages they map to."""


class KnowledgeBaseError(Exception):
    """Base class for aikb errors."""


class ValidationError(KnowledgeBaseError):
    """Bad caller input, e.g. empty text."""


class ConfigurationError(KnowledgeBaseError):
    """Missing or invalid credentials or settings."""


class RemoteServiceError(KnowledgeBaseError):
    """A remote dependency failed.

    ``status`` is the HTTP status code, or None when the service could not be
    reached at all.
    """

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def reachable(self) -> bool:
        return self.status is not None


class UnexpectedFormat(KnowledgeBaseError):
    """The embedding service answered with a shape we don't recognize."""


class StorageError(KnowledgeBaseError):
    """Local persistence failed."""


def user_message(exc: Exception) -> str:
    """Human-readable message for an error, suitable for a notification."""
    if isinstance(exc, ValidationError):
        return str(exc) or "No content to save."
    if isinstance(exc, ConfigurationError):
        return f"Knowledge base is not configured: {exc}"
    if isinstance(exc, RemoteServiceError):
        if exc.reachable:
            return f"The remote service rejected the request (HTTP {exc.status})."
        return "Could not reach the remote service."
    if isinstance(exc, UnexpectedFormat):
        return "Unexpected response from the embedding service."
    if isinstance(exc, StorageError):
        return f"Local storage failed: {exc}"
    return str(exc) or exc.__class__.__name__
