"""Exception hierarchy shared by the store, adapters, API client and UI."""

from __future__ import annotations


class LibraLinkError(Exception):
    """Base class for every error raised by libra-link."""


class ValidationError(LibraLinkError):
    """Local input problem. Shown inline, never retried or queued."""


class UnsupportedFormatError(ValidationError):
    pass


class MissingTokenError(ValidationError):
    pass


class AdapterError(LibraLinkError):
    """A document could not be turned into display lines."""


class StorageError(LibraLinkError):
    pass


_PREVIEW_LIMIT = 280


class APIError(LibraLinkError):
    """Non-success response from the remote API."""

    def __init__(self, operation: str, status: int, body: str = "") -> None:
        self.operation = operation
        self.status = status
        self.body = body
        super().__init__(f"{operation} failed ({status}): {body}")

    @classmethod
    def from_response(cls, operation: str, status: int, body: str, reason: str = "") -> "APIError":
        preview = body.strip() or reason
        if len(preview) > _PREVIEW_LIMIT:
            preview = preview[:_PREVIEW_LIMIT] + "..."
        return cls(operation, status, preview)

    @property
    def is_transient(self) -> bool:
        return self.status in (0, 408, 429) or self.status >= 500

    @property
    def is_auth(self) -> bool:
        return self.status in (401, 403)

    @property
    def is_gone(self) -> bool:
        return self.status in (404, 410)


class TransportError(APIError):
    """Connectivity failure or timeout before a response arrived."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.status = 0
        self.body = reason
        LibraLinkError.__init__(self, f"{operation} failed: {reason}")


def is_retryable(exc: BaseException) -> bool:
    """Whether a failed mutation belongs in the outbox.

    Anything the remote side rejected or never answered is queued; local
    validation failures are not.
    """
    return isinstance(exc, APIError)
