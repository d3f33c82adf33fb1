"""Error taxonomy shared by the ingest, retrieval and chat paths."""

from __future__ import annotations

MASKED_MESSAGE = "An error occurred."


class DocChatError(Exception):
    """Base class for errors raised by docchat components."""

    status_code = 500
    public_message = MASKED_MESSAGE


class ValidationError(DocChatError):
    """Client supplied a missing or empty query."""

    status_code = 400

    def __init__(self, message: str = "Missing query parameter") -> None:
        super().__init__(message)
        self.public_message = message


class ProviderError(DocChatError):
    """Embedding or generation provider failed."""

    status_code = 502

    def __init__(self, message: str, *, provider: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status

    @property
    def retryable(self) -> bool:
        if self.status is None:
            return True
        return self.status in (408, 409, 429) or self.status >= 500


class ShapeError(DocChatError):
    """Embedding vector has the wrong length or non-finite components."""

    def __init__(self, index: int, length: int | None, expected: int, detail: str | None = None) -> None:
        message = (
            f"Invalid embedding format at index {index}: expected array of {expected} numbers, "
            f"got {length if length is not None else 'no'} elements"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.index = index
        self.length = length
        self.expected = expected


class StorageConnectionError(DocChatError):
    """Store stayed unreachable after reconnect attempts."""

    status_code = 503


class CacheWriteError(DocChatError):
    """Best-effort cache persistence failed; never surfaced to callers."""


__all__ = [
    "MASKED_MESSAGE",
    "DocChatError",
    "ValidationError",
    "ProviderError",
    "ShapeError",
    "StorageConnectionError",
    "CacheWriteError",
]
