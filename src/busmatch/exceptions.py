"""Exceptions raised by busmatch."""


class BusMatchError(Exception):
    """Base class for busmatch errors."""


class ConfigurationError(BusMatchError, ValueError):
    """Required settings are missing or invalid."""


class ProviderError(BusMatchError):
    """A transit provider call failed or returned an unusable payload."""

    def __init__(self, message: str, endpoint: str = "", status_code: int = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class AuthenticationError(ProviderError):
    """An access token could not be obtained."""
