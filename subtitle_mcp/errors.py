"""
Exception types shared by the resolver, the tool dispatcher and the HTTP layer.

Each error carries a short ``title`` (used as the ``error`` field of API error
bodies) and a human-readable message.
"""


class SubtitleServiceError(Exception):
    """Base class for all errors raised by subtitle-mcp."""

    title = "error"
    retryable = False

    def __init__(self, message: str, title: str | None = None):
        self.message = message
        if title is not None:
            self.title = title
        super().__init__(message)


class ValidationError(SubtitleServiceError):
    """Bad caller input: reference, language code or cursor."""

    title = "validation_error"


class NotFoundError(SubtitleServiceError):
    """Resolution exhausted; track availability may change, so a later retry is fine."""

    title = "not_found"
    retryable = True


class UpstreamError(SubtitleServiceError):
    """An extraction or fallback call failed or timed out."""

    title = "upstream_error"
    retryable = True


class SessionError(SubtitleServiceError):
    """Unknown, expired or missing session id."""

    title = "session_error"
