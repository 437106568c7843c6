"""Exception hierarchy for the matching and dispatch core."""

from typing import Any


class MatchingError(Exception):
    """Base exception for all ridematch errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(MatchingError):
    """Errors that may succeed on retry."""

    pass


class StoreUnavailableError(TransientError):
    """Persistent driver store unreachable or failing."""

    pass


class DeliveryFailedError(TransientError):
    """Notification delivery attempt failed (rejected, timed out, no token)."""

    pass


class CacheBackendError(TransientError):
    """Distributed cache backend failure. Never escapes the availability cache."""

    pass


class PermanentError(MatchingError):
    """Errors that will not succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Invalid input (coordinates, radius, duplicate registration)."""

    pass


class NotFoundError(PermanentError):
    """Unknown driver id."""

    pass


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    pass
