"""
Exception hierarchy for bundle dispatch and volume sessions.
"""

from typing import Optional


class BundleBotError(Exception):
    """Base exception for all engine errors."""
    pass


class ConfigurationError(BundleBotError):
    """Missing endpoint or invalid setting. Fatal, never retried."""
    pass


class InvalidConfiguration(ConfigurationError):
    """Raised when a trade intent cannot be dispatched as given."""
    pass


class AlreadyRunning(ConfigurationError):
    """Raised when a volume session is started while another one is active."""
    pass


class UpstreamUnavailable(BundleBotError):
    """The transaction builder could not be reached."""
    pass


class UpstreamRejected(BundleBotError):
    """The transaction builder reported a logical failure."""
    pass


class MalformedResponse(UpstreamRejected):
    """The builder reply matched none of the accepted response shapes."""
    pass


class RelayUnreachable(BundleBotError):
    """The bundle relay could not be reached."""
    pass


class RelayRejected(BundleBotError):
    """The bundle relay refused a bundle."""

    def __init__(self, message: str, code: Optional[int] = None, details: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class SigningError(BundleBotError):
    """A transaction template could not be signed locally."""
    pass
