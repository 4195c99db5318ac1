"""Service-area coverage check against the active service centers."""

import logging
from collections.abc import Sequence
from typing import Literal

from pydantic import BaseModel

from ..pricing.config import ServiceCenter
from .distance import Coordinates, haversine_distance_km

logger = logging.getLogger(__name__)

AreaFailure = Literal["pickup_outside", "dropoff_outside", "lookup_failed"]

PICKUP_OUTSIDE_REASON = "Pickup location is outside our service area"
DROPOFF_OUTSIDE_REASON = "Dropoff location is outside our service area"
LOOKUP_FAILED_REASON = "Unable to validate service area. Please try again."


class CoverageCheck(BaseModel):
    """Nearest active center for one point and whether it covers the point."""

    is_within: bool
    nearest_distance_km: float | None = None
    nearest_center: ServiceCenter | None = None


class ServiceAreaResult(BaseModel):
    ok: bool
    pickup_area_label: str | None = None
    dropoff_area_label: str | None = None
    reason: str | None = None
    failure: AreaFailure | None = None


def nearest_center(point: Coordinates, centers: Sequence[ServiceCenter]) -> CoverageCheck:
    """Find the nearest active center; the point is covered iff it lies within
    that center's soft radius.
    """
    best: ServiceCenter | None = None
    best_distance = float("inf")

    for center in centers:
        if not center.active:
            continue
        distance = haversine_distance_km(point.lat, point.lng, center.lat, center.lng)
        if distance < best_distance:
            best_distance = distance
            best = center

    if best is None:
        return CoverageCheck(is_within=False)

    return CoverageCheck(
        is_within=best_distance <= best.soft_radius_km,
        nearest_distance_km=best_distance,
        nearest_center=best,
    )


class ServiceAreaValidator:
    """Checks both endpoints of a delivery independently.

    Cross-center deliveries are allowed: pickup may be covered by one
    center and dropoff by another.
    """

    def validate(
        self,
        pickup: Coordinates,
        dropoff: Coordinates,
        centers: Sequence[ServiceCenter],
    ) -> ServiceAreaResult:
        try:
            pickup_check = nearest_center(pickup, centers)
            dropoff_check = nearest_center(dropoff, centers)
        except Exception as e:
            # Fail closed: a broken lookup never lets a delivery through.
            logger.error(f"Service area validation error: {e}", exc_info=True)
            return ServiceAreaResult(ok=False, reason=LOOKUP_FAILED_REASON, failure="lookup_failed")

        if not pickup_check.is_within:
            return ServiceAreaResult(
                ok=False, reason=PICKUP_OUTSIDE_REASON, failure="pickup_outside"
            )

        if not dropoff_check.is_within:
            return ServiceAreaResult(
                ok=False, reason=DROPOFF_OUTSIDE_REASON, failure="dropoff_outside"
            )

        assert pickup_check.nearest_center is not None
        assert dropoff_check.nearest_center is not None
        return ServiceAreaResult(
            ok=True,
            pickup_area_label=pickup_check.nearest_center.label,
            dropoff_area_label=dropoff_check.nearest_center.label,
        )
