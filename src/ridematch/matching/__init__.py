from .availability_cache import AvailabilityCache
from .driver_geospatial_index import DriverGeospatialIndex
from .driver_registry import DriverRegistry
from .matching_service import MatchingService, MatchResult, RideRequest
from .notification_dispatch import (
    DeadLetterReporter,
    JobState,
    LoggingDeadLetterReporter,
    NotificationDispatcher,
    NotificationJob,
)

__all__ = [
    "AvailabilityCache",
    "DeadLetterReporter",
    "DriverGeospatialIndex",
    "DriverRegistry",
    "JobState",
    "LoggingDeadLetterReporter",
    "MatchResult",
    "MatchingService",
    "NotificationDispatcher",
    "NotificationJob",
    "RideRequest",
]
