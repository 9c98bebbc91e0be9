from typing import Optional


class TidequoteError(Exception):
    """Base class for all errors raised by tidequote."""


class ConfigError(TidequoteError):
    pass


class Unauthenticated(TidequoteError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)
        self.message = message


class AlreadyContributed(TidequoteError):
    status_code = 400

    def __init__(self, identity_id: Optional[str] = None,
                 message: str = "You have already clicked"):
        super().__init__(message)
        self.identity_id = identity_id
        self.message = message


class UpstreamUnavailable(TidequoteError):
    """The quote API failed. Recovered inside the quote fetcher."""


class IdentityProviderError(TidequoteError):
    """The OAuth handshake failed or returned an unusable profile."""
