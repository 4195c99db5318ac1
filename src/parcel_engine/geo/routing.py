"""Distance provider boundary over an external routing API (OSRM)."""

import logging
import math
from typing import Any, Protocol

import httpx
import requests
from pydantic import BaseModel, Field

from ..core.exceptions import (
    RouteNotFoundError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from ..core.retry import RetryConfig, with_retry, with_retry_sync
from .distance import Coordinates

logger = logging.getLogger(__name__)


class RouteResult(BaseModel):
    distance_km: float = Field(ge=0)
    duration_minutes: int = Field(ge=0)

    @classmethod
    def from_meters_seconds(cls, distance_meters: float, duration_seconds: float) -> "RouteResult":
        """Kilometers rounded to 2 decimals, minutes rounded up."""
        return cls(
            distance_km=round(distance_meters / 1000.0, 2),
            duration_minutes=math.ceil(duration_seconds / 60.0),
        )


class DistanceProvider(Protocol):
    def compute_route(self, pickup: Coordinates, dropoff: Coordinates) -> RouteResult: ...


class OSRMDistanceProvider:
    """Routes through an OSRM server.

    ``compute_route`` is the blocking call used by request handlers; it is
    bounded by ``timeout`` and retried on transient upstream failures.
    ``compute_route_async`` is the httpx equivalent for asyncio callers.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        retry_config: RetryConfig | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()

    def _route_url(self, pickup: Coordinates, dropoff: Coordinates) -> str:
        # OSRM takes lon,lat pairs
        return (
            f"{self.base_url}/route/v1/driving/"
            f"{pickup.lng},{pickup.lat};{dropoff.lng},{dropoff.lat}"
        )

    @staticmethod
    def _params() -> dict[str, str]:
        return {"overview": "false"}

    @staticmethod
    def _parse(status_code: int, data: dict[str, Any]) -> RouteResult:
        if status_code >= 500:
            raise UpstreamUnavailableError(f"OSRM server error: {status_code}")

        code = data.get("code")
        if code == "NoRoute":
            raise RouteNotFoundError("No route found between locations")

        if code != "Ok":
            raise UpstreamUnavailableError(
                f"OSRM error: {code} (HTTP {status_code})",
                details={"message": data.get("message")},
            )

        if not data.get("routes"):
            raise RouteNotFoundError("No route found between locations")

        route = data["routes"][0]
        return RouteResult.from_meters_seconds(float(route["distance"]), float(route["duration"]))

    def compute_route(self, pickup: Coordinates, dropoff: Coordinates) -> RouteResult:
        return with_retry_sync(
            lambda: self._fetch_sync(pickup, dropoff),
            config=self.retry_config,
            operation_name="osrm.route",
        )

    async def compute_route_async(self, pickup: Coordinates, dropoff: Coordinates) -> RouteResult:
        return await with_retry(
            lambda: self._fetch_async(pickup, dropoff),
            config=self.retry_config,
            operation_name="osrm.route",
        )

    def _fetch_sync(self, pickup: Coordinates, dropoff: Coordinates) -> RouteResult:
        try:
            response = requests.get(
                self._route_url(pickup, dropoff), params=self._params(), timeout=self.timeout
            )
            data = response.json() if response.status_code < 500 else {}
        except requests.Timeout as e:
            raise UpstreamTimeoutError(f"Request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise UpstreamUnavailableError(f"Network error: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailableError(f"Malformed OSRM response: {e}") from e

        result = self._parse(response.status_code, data)
        logger.debug(
            f"Route computed: {result.distance_km} km, {result.duration_minutes} min"
        )
        return result

    async def _fetch_async(self, pickup: Coordinates, dropoff: Coordinates) -> RouteResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self._route_url(pickup, dropoff), params=self._params())
            data = response.json() if response.status_code < 500 else {}
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Request timed out after {self.timeout}s") from e
        except httpx.NetworkError as e:
            raise UpstreamUnavailableError(f"Network error: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(f"HTTP error: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailableError(f"Malformed OSRM response: {e}") from e

        return self._parse(response.status_code, data)
