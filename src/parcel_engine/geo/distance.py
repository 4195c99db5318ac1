"""Centralized geographic distance calculations.

Haversine great-circle distance between coordinates, used by the
service-area check to find each endpoint's nearest service center.
"""

from math import atan2, cos, isfinite, radians, sin, sqrt

from pydantic import BaseModel, ConfigDict

EARTH_RADIUS_KM = 6371.0


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)


def haversine_distance_km(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points in kilometers.

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
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_between(a: Coordinates, b: Coordinates) -> float:
    return haversine_distance_km(a.lat, a.lng, b.lat, b.lng)


def is_valid_coordinates(point: Coordinates) -> bool:
    """True when latitude/longitude are finite and inside their ranges."""
    if not (isfinite(point.lat) and isfinite(point.lng)):
        return False
    return -90.0 <= point.lat <= 90.0 and -180.0 <= point.lng <= 180.0
