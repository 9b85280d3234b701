"""Exceptions raised by the archiver.

Every failure in the crawl, replay and index layers unwinds to the caller as
one of these. Nothing here is retried automatically.
"""

from typing import Optional


class ArchiveError(Exception):
    """Base class for all archiver errors."""


class RemoteError(ArchiveError):
    """The remote service answered with an unexpected status, or could not be reached."""

    def __init__(self, resource: str, status: Optional[int] = None, payload: bytes = b"", reason: str = ""):
        self.resource = resource
        self.status = status
        self.payload = payload
        detail = f"status {status}" if status is not None else (reason or "transport failure")
        super().__init__(f"get {resource}: {detail}")


class LocalIOError(ArchiveError):
    """A filesystem operation on the mirror failed."""


class ArchiveCorruptError(ArchiveError):
    """The mirror is incomplete or unreadable for the requested data."""


class ConfigError(ArchiveError):
    """Required configuration is missing."""
