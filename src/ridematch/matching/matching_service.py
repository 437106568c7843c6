import logging
from dataclasses import dataclass, field
from typing import Any

from ..geo import Position
from ..match_logging import log_context
from ..models import Region
from .availability_cache import AvailabilityCache
from .driver_geospatial_index import DriverGeospatialIndex
from .notification_dispatch import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RideRequest:
    request_id: str
    pickup: Position
    radius_km: float = 5.0
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MatchResult:
    request_id: str
    driver_id: str | None = None
    distance_km: float | None = None
    job_id: str | None = None

    @property
    def matched(self) -> bool:
        return self.driver_id is not None


class MatchingService:
    """Finds the nearest available driver and queues the ride offer notification."""

    def __init__(
        self,
        index: DriverGeospatialIndex,
        cache: AvailabilityCache,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._index = index
        self._cache = cache
        self._dispatcher = dispatcher

    def find_candidates(
        self, center: Position | tuple[float, float], radius_km: float
    ) -> list[tuple[str, float]]:
        """(driver_id, distance_km) of available drivers in range, nearest first."""
        return self._index.query_with_distances(center, radius_km)

    def available_in(self, region: Region) -> set[str]:
        return self._cache.get_available_set(region)

    async def offer_ride(self, request: RideRequest) -> MatchResult:
        """Pick the nearest driver and enqueue the offer; does not wait for delivery."""
        with log_context(correlation_id=request.request_id):
            candidates = self.find_candidates(request.pickup, request.radius_km)
            if not candidates:
                logger.info(
                    f"No available drivers within {request.radius_km} km "
                    f"for request {request.request_id}"
                )
                return MatchResult(request_id=request.request_id)

            driver_id, distance_km = candidates[0]
            message = {
                "type": "ride_offer",
                "request_id": request.request_id,
                "pickup": request.pickup.as_tuple(),
                "distance_km": round(distance_km, 3),
                **request.payload,
            }
            job_id = await self._dispatcher.enqueue(driver_id, message)
            logger.info(
                f"Offered request {request.request_id} to driver {driver_id} "
                f"({distance_km:.2f} km away), job {job_id}"
            )
            return MatchResult(
                request_id=request.request_id,
                driver_id=driver_id,
                distance_km=distance_km,
                job_id=job_id,
            )
