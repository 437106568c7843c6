import math
import threading
import time
from collections.abc import Callable

import h3

from ..core.exceptions import ValidationError
from ..geo import Position, haversine_distance_km
from ..metrics.prometheus_exporter import (
    ridematch_drivers_available,
    ridematch_index_query_seconds,
)
from ..models import DriverChange


class DriverGeospatialIndex:
    """Spatial index of available drivers using H3 hexagonal cells.

    Only drivers that are available and have a position are held. A radius
    query visits the cells of an H3 disk wide enough to cover the radius, or
    the occupied cells when there are fewer of those, so its cost follows
    driver density around the query point rather than the fleet size.
    """

    def __init__(
        self,
        h3_resolution: int = 9,
        availability_check: Callable[[str], bool] | None = None,
    ):
        self._h3_resolution = h3_resolution
        self._edge_km = h3.average_hexagon_edge_length(h3_resolution, unit="km")
        self._availability_check = availability_check
        self._h3_cells: dict[str, set[str]] = {}
        self._driver_locations: dict[str, tuple[float, float, str]] = {}
        self._lock = threading.Lock()  # Thread safety for concurrent access

    def apply(self, change: DriverChange) -> None:
        """Apply a registry change event synchronously."""
        after = change.after
        if after is not None and after.available and after.position is not None:
            self.add_driver(after.driver_id, after.position.lat, after.position.lon)
        else:
            self.remove_driver(change.driver_id)

    def add_driver(self, driver_id: str, lat: float, lon: float) -> None:
        """Insert or move a driver."""
        with self._lock:
            new_cell = self._get_h3_cell(lat, lon)
            existing = self._driver_locations.get(driver_id)
            if existing is not None and existing[2] != new_cell:
                self._discard_from_cell(driver_id, existing[2])
            self._h3_cells.setdefault(new_cell, set()).add(driver_id)
            self._driver_locations[driver_id] = (lat, lon, new_cell)
            ridematch_drivers_available.set(len(self._driver_locations))

    def remove_driver(self, driver_id: str) -> None:
        with self._lock:
            if driver_id not in self._driver_locations:
                return

            _, _, cell = self._driver_locations.pop(driver_id)
            self._discard_from_cell(driver_id, cell)
            ridematch_drivers_available.set(len(self._driver_locations))

    def query(self, center: Position | tuple[float, float], radius_km: float) -> list[str]:
        """Available driver ids within radius_km (inclusive), nearest first."""
        return [driver_id for driver_id, _ in self.query_with_distances(center, radius_km)]

    def query_with_distances(
        self, center: Position | tuple[float, float], radius_km: float
    ) -> list[tuple[str, float]]:
        if not math.isfinite(radius_km) or radius_km < 0:
            raise ValidationError(
                f"Radius must be finite and >= 0, got {radius_km}", {"radius_km": radius_km}
            )
        center = Position.from_tuple(center)

        start_time = time.perf_counter()
        candidates: list[tuple[str, float]] = []
        with self._lock:
            for cell in self._candidate_cells(center, radius_km):
                for driver_id in self._h3_cells.get(cell, ()):
                    driver_lat, driver_lon, _ = self._driver_locations[driver_id]
                    distance = haversine_distance_km(center.lat, center.lon, driver_lat, driver_lon)
                    if distance <= radius_km:
                        candidates.append((driver_id, distance))

        # An entry whose removal is still in flight must not leak out
        check = self._availability_check
        if check is not None:
            candidates = [(driver_id, d) for driver_id, d in candidates if check(driver_id)]

        candidates.sort(key=lambda x: (x[1], x[0]))
        ridematch_index_query_seconds.observe(time.perf_counter() - start_time)
        return candidates

    def _candidate_cells(self, center: Position, radius_km: float) -> list[str]:
        # Every ring adds at least ~1.5 edge lengths of coverage, one edge of slack
        # absorbs the query point sitting off its cell center
        k = math.ceil(radius_km / self._edge_km) + 1
        disk_size = 3 * k * (k + 1) + 1
        if disk_size >= len(self._h3_cells):
            return list(self._h3_cells)
        return list(h3.grid_disk(self._get_h3_cell(center.lat, center.lon), k))

    def _discard_from_cell(self, driver_id: str, cell: str) -> None:
        members = self._h3_cells.get(cell)
        if members is None:
            return
        members.discard(driver_id)
        if not members:
            del self._h3_cells[cell]

    def _get_h3_cell(self, lat: float, lon: float) -> str:
        return h3.latlng_to_cell(lat, lon, self._h3_resolution)

    def __len__(self) -> int:
        with self._lock:
            return len(self._driver_locations)

    def __contains__(self, driver_id: object) -> bool:
        with self._lock:
            return driver_id in self._driver_locations

    def clear(self) -> None:
        """Drop all entries (runtime shutdown or full reload)."""
        with self._lock:
            self._h3_cells.clear()
            self._driver_locations.clear()
            ridematch_drivers_available.set(0)
