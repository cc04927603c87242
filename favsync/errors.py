"""Error taxonomy for sync, session and enrichment failures."""
from typing import Optional


class FavSyncError(Exception):
    """Base class for expected failures."""


class ConfigurationError(FavSyncError):
    """Missing session, missing upstream user id or invalid settings."""


class NoValidAuthenticationError(ConfigurationError):
    """No session could be established, by cookies or by login."""


class AuthExpiredError(FavSyncError):
    """401/403 that survived the single refresh-and-retry."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(FavSyncError):
    """429 that survived the bounded backoff."""


class UpstreamError(FavSyncError):
    """Unexpected status, transport failure or timeout."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ParseError(FavSyncError):
    """Malformed or unexpected payload."""
