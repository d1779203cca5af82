"""Exception hierarchy shared by the archiving pipeline."""

from __future__ import annotations


class ArchiverError(RuntimeError):
    """Base class for archiver failures."""


class PlatformError(ArchiverError):
    """Raised when a remote platform call fails and should not be retried."""


class TransientFetchError(PlatformError):
    """Raised for network, timeout, rate-limit and server-side failures."""


class StoryNotFoundError(PlatformError):
    """Raised when a story id or author handle is unknown to the platform."""


class AuthenticationError(PlatformError):
    """Raised when the platform rejects the supplied credentials."""


class RetryExhaustedError(PlatformError):
    """Raised once transient failures outlive the retry policy."""

    def __init__(self, description: str, attempts: int, last_error: Exception) -> None:
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class ListingCrawlError(ArchiverError):
    """Raised when a listing page cannot be fetched; the crawl is aborted."""


class ArchiveIntegrityError(ArchiverError):
    """Raised when an archive folder is malformed or a chapter sequence has gaps."""
