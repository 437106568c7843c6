"""Great-circle distance calculations used by the spatial index."""

from math import atan2, cos, radians, sin, sqrt

EARTH_RADIUS_KM = 6371.0088  # mean Earth radius (IUGG)


def haversine_distance_km(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points in kilometers.

    Uses the Haversine formula to calculate the shortest distance over
    the Earth's surface between two points specified by latitude/longitude.

    Args:
        lat1: Latitude of first point in degrees
        lon1: Longitude of first point in degrees
        lat2: Latitude of second point in degrees
        lon2: Longitude of second point in degrees

    Returns:
        Distance between the two points in kilometers
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Clamp guards against a > 1 from float rounding on antipodal points
    c = 2 * atan2(sqrt(min(a, 1.0)), sqrt(max(1.0 - a, 0.0)))

    return EARTH_RADIUS_KM * c
