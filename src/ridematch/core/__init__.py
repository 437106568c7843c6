from .exceptions import (
    CacheBackendError,
    ConfigurationError,
    DeliveryFailedError,
    MatchingError,
    NotFoundError,
    PermanentError,
    StoreUnavailableError,
    TransientError,
    ValidationError,
)
from .retry import RetryConfig, with_retry_sync
from .scheduler import PeriodicTask

__all__ = [
    "CacheBackendError",
    "ConfigurationError",
    "DeliveryFailedError",
    "MatchingError",
    "NotFoundError",
    "PeriodicTask",
    "PermanentError",
    "RetryConfig",
    "StoreUnavailableError",
    "TransientError",
    "ValidationError",
    "with_retry_sync",
]
