from .distance import haversine_distance_km
from .position import Position

__all__ = ["Position", "haversine_distance_km"]
