from dataclasses import dataclass

from ..core.exceptions import ValidationError
from .distance import haversine_distance_km


@dataclass(frozen=True, slots=True)
class Position:
    """A validated latitude/longitude pair in degrees."""

    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise ValidationError(f"Latitude out of range: {self.lat}", {"lat": self.lat})
        if not -180.0 <= self.lon <= 180.0:
            raise ValidationError(f"Longitude out of range: {self.lon}", {"lon": self.lon})

    @classmethod
    def from_tuple(cls, value: "tuple[float, float] | Position") -> "Position":
        if isinstance(value, Position):
            return value
        lat, lon = value
        return cls(float(lat), float(lon))

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lon)

    def distance_km(self, other: "Position") -> float:
        return haversine_distance_km(self.lat, self.lon, other.lat, other.lon)
