from .distance import Coordinates, distance_between, haversine_distance_km, is_valid_coordinates
from .route_cache import CachingDistanceProvider
from .routing import DistanceProvider, OSRMDistanceProvider, RouteResult
from .service_area import CoverageCheck, ServiceAreaResult, ServiceAreaValidator, nearest_center

__all__ = [
    "Coordinates",
    "haversine_distance_km",
    "distance_between",
    "is_valid_coordinates",
    "ServiceAreaValidator",
    "ServiceAreaResult",
    "CoverageCheck",
    "nearest_center",
    "DistanceProvider",
    "OSRMDistanceProvider",
    "RouteResult",
    "CachingDistanceProvider",
]
