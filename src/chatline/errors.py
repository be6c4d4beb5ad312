"""Application-level exception types for chatline."""

from __future__ import annotations


class ChatlineError(Exception):
    """Base exception for chatline."""


class ConfigurationError(ChatlineError):
    """Raised when settings cannot be loaded or are inconsistent."""


class ServiceError(ChatlineError):
    """Raised when a call to the chat service fails.

    The string form is the human-readable description surfaced to the user.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class InvalidResponseError(ServiceError):
    """Raised when the service answers with a body of the wrong shape."""


class StreamError(ServiceError):
    """Raised when the service reports an error inside an event stream."""
