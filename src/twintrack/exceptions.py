"""Custom exception hierarchy for twintrack."""

from __future__ import annotations


class TwinTrackError(Exception):
    """Base exception for all twintrack errors."""


class TrackerConfigError(TwinTrackError):
    """Invalid or missing configuration."""


class SessionStateError(TwinTrackError):
    """A component was used outside of its lifecycle (not started / already closed)."""


class MessageDecodeError(TwinTrackError):
    """An inbound feed frame was malformed or violated the message schema.

    These are never fatal: the stream client drops the frame and records
    a diagnostic entry.
    """

    def __init__(self, message: str, *, frame: str = "") -> None:
        self.frame = frame[:200]
        super().__init__(message)


class FeedTransportError(TwinTrackError):
    """Connection-level failure (refused, dropped, timed out, not connected)."""

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        code: int | None = None,
    ) -> None:
        self.url = url
        self.code = code
        super().__init__(message)


class PersistenceError(TwinTrackError):
    """The durable history store failed (unavailable, transaction aborted)."""

    def __init__(self, message: str, *, operation: str = "") -> None:
        self.operation = operation
        super().__init__(message)
