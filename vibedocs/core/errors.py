"""
Error taxonomy shared by the core components and the HTTP layer.

Every error carries a client-safe message and the HTTP status the API should
answer with. Messages must never contain absolute filesystem paths.
"""


class VibeDocsError(Exception):
    """Base class for errors surfaced to API clients."""

    status = 500

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class ValidationError(VibeDocsError):
    """Bad or traversing path, missing required field."""

    status = 400


class NotFound(VibeDocsError):
    status = 404


class ConflictExhausted(VibeDocsError):
    """Upload naming collisions exceeded the attempt limit."""

    status = 500


class StorageError(VibeDocsError):
    """Unexpected OS-level failure not classified above."""

    status = 500
