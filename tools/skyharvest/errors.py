"""Error taxonomy for the harvester."""

from __future__ import annotations


class SkyHarvestError(RuntimeError):
    """Base class for every error raised by the harvester."""


class AuthenticationError(SkyHarvestError):
    """Raised when session creation is rejected or cannot be completed."""


class NetworkError(SkyHarvestError):
    """Raised when a request fails at the transport level (DNS, TLS, timeout)."""


class APIError(SkyHarvestError):
    """Raised for a non-success HTTP status that is not retried."""

    def __init__(self, message: str, *, status: int, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class RateLimitExhaustedError(SkyHarvestError):
    """Raised when HTTP 429 persists after the backoff budget is spent."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class DecodeError(SkyHarvestError):
    """Raised when an API payload does not match the expected schema."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class DownloadError(SkyHarvestError):
    """Raised when a blob cannot be fetched."""


class ArchiveSetupError(SkyHarvestError):
    """Raised when an output directory cannot be created."""


class StorageError(SkyHarvestError):
    """Raised when reading or writing the SQLite archive fails."""
