"""Domain records shared by the registry, index, cache and dispatcher."""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from .core.exceptions import ValidationError
from .geo import Position


@dataclass(frozen=True)
class Driver:
    """Snapshot of a driver. Registry mutations produce a new snapshot."""

    driver_id: str
    name: str
    position: Position | None = None
    available: bool = False
    device_token: str | None = None
    version: int = 0

    def evolve(self, **changes: Any) -> "Driver":
        return replace(self, version=self.version + 1, **changes)


class ChangeKind(str, Enum):
    REGISTERED = "registered"
    LOCATION = "location"
    AVAILABILITY = "availability"
    DEVICE_TOKEN = "device_token"
    DEREGISTERED = "deregistered"
    REFRESHED = "refreshed"


@dataclass(frozen=True)
class DriverChange:
    """Published by the registry after every acknowledged mutation."""

    kind: ChangeKind
    driver_id: str
    before: Driver | None
    after: Driver | None

    @property
    def positions(self) -> list[Position]:
        """Distinct positions touched by this change (old and new)."""
        seen: list[Position] = []
        for record in (self.before, self.after):
            if record is not None and record.position is not None:
                if record.position not in seen:
                    seen.append(record.position)
        return seen


@dataclass(frozen=True)
class Region:
    """Circular search area, the unit cached by the availability cache."""

    center: Position
    radius_km: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.radius_km) or self.radius_km < 0:
            raise ValidationError(
                f"Radius must be finite and >= 0, got {self.radius_km}",
                {"radius_km": self.radius_km},
            )

    @property
    def cache_key(self) -> str:
        # 6 decimals is ~0.1 m, well below any meaningful radius
        return f"{self.center.lat:.6f},{self.center.lon:.6f},{self.radius_km:.4f}"

    def contains(self, position: Position) -> bool:
        return self.center.distance_km(position) <= self.radius_km
