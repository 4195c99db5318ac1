import threading
from collections import OrderedDict

from .distance import Coordinates
from .routing import DistanceProvider, RouteResult


class CachingDistanceProvider:
    """LRU cache in front of a distance provider.

    A quote followed by an order for the same addresses hits the routing
    API once. Keys use exact coordinates (6 decimals) so cached distances
    price identically to fresh ones. Direction is part of the key.
    """

    def __init__(self, provider: DistanceProvider, maxsize: int = 1000):
        self.provider = provider
        self.maxsize = maxsize
        self._routes: OrderedDict[str, RouteResult] = OrderedDict()
        self._lock = threading.Lock()
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _generate_cache_key(pickup: Coordinates, dropoff: Coordinates) -> str:
        return "-".join(f"{point.lat:.6f},{point.lng:.6f}" for point in (pickup, dropoff))

    def _lookup(self, key: str) -> RouteResult | None:
        with self._lock:
            route = self._routes.get(key)
            if route is None:
                self._misses += 1
            else:
                self._hits += 1
                self._routes.move_to_end(key)
            return route

    def _store(self, key: str, route: RouteResult) -> None:
        if self.maxsize <= 0:
            return
        with self._lock:
            self._routes[key] = route
            self._routes.move_to_end(key)
            while len(self._routes) > self.maxsize:
                self._routes.popitem(last=False)

    def compute_route(self, pickup: Coordinates, dropoff: Coordinates) -> RouteResult:
        key = self._generate_cache_key(pickup, dropoff)
        cached = self._lookup(key)
        if cached is not None:
            return cached

        # Upstream errors propagate and are never cached.
        route = self.provider.compute_route(pickup, dropoff)
        self._store(key, route)
        return route

    def get_cache_stats(self) -> dict[str, float | int]:
        with self._lock:
            requests = self._hits + self._misses
            return {
                "requests": requests,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / requests if requests else 0.0,
                "cache_size": len(self._routes),
            }

    def clear_cache(self) -> None:
        with self._lock:
            self._routes.clear()
            self._reset_counters()
