from unittest.mock import patch

import pytest

from parcel_engine.geo.distance import Coordinates, haversine_distance_km
from parcel_engine.geo.service_area import (
    DROPOFF_OUTSIDE_REASON,
    LOOKUP_FAILED_REASON,
    PICKUP_OUTSIDE_REASON,
    ServiceAreaValidator,
    nearest_center,
)
from parcel_engine.pricing.config import ServiceCenter
from tests.factories import LANGLEY, SURREY, VANCOUVER


@pytest.fixture
def centers(pricing_config):
    return pricing_config.service_area.centers


@pytest.fixture
def validator() -> ServiceAreaValidator:
    return ServiceAreaValidator()


@pytest.mark.unit
class TestNearestCenter:
    def test_point_at_center_is_covered(self, centers):
        check = nearest_center(SURREY, centers)
        assert check.is_within
        assert check.nearest_center.code == "SUR"
        assert check.nearest_distance_km == pytest.approx(0.0)

    def test_inactive_centers_are_ignored(self, centers):
        # Burnaby itself, but Burnaby is inactive and Surrey is ~12 km away
        burnaby = Coordinates(lat=49.2488, lng=-122.9805)
        check = nearest_center(burnaby, centers)
        assert check.nearest_center.code == "SUR"

    def test_no_active_centers(self):
        inactive = (
            ServiceCenter(code="X", label="X", lat=0, lng=0, soft_radius_km=5, active=False),
        )
        check = nearest_center(SURREY, inactive)
        assert not check.is_within
        assert check.nearest_center is None

    def test_boundary_is_inclusive(self):
        # Exactly one degree north sits on the radius
        radius = haversine_distance_km(0.0, 0.0, 1.0, 0.0)
        center = ServiceCenter(code="C", label="C", lat=0.0, lng=0.0, soft_radius_km=radius)
        check = nearest_center(Coordinates(lat=1.0, lng=0.0), (center,))
        assert check.is_within


@pytest.mark.unit
class TestServiceAreaValidator:
    def test_cross_center_delivery_allowed(self, validator, centers):
        result = validator.validate(SURREY, LANGLEY, centers)

        assert result.ok
        assert result.pickup_area_label == "Surrey"
        assert result.dropoff_area_label == "Langley"
        assert result.reason is None

    def test_pickup_outside(self, validator, centers):
        result = validator.validate(VANCOUVER, SURREY, centers)

        assert not result.ok
        assert result.failure == "pickup_outside"
        assert result.reason == PICKUP_OUTSIDE_REASON

    def test_dropoff_outside(self, validator, centers):
        result = validator.validate(SURREY, VANCOUVER, centers)

        assert not result.ok
        assert result.failure == "dropoff_outside"
        assert result.reason == DROPOFF_OUTSIDE_REASON

    def test_pickup_checked_before_dropoff(self, validator, centers):
        result = validator.validate(VANCOUVER, VANCOUVER, centers)
        assert result.failure == "pickup_outside"

    def test_lookup_failure_fails_closed(self, validator, centers):
        with patch(
            "parcel_engine.geo.service_area.haversine_distance_km",
            side_effect=ArithmeticError("boom"),
        ):
            result = validator.validate(SURREY, LANGLEY, centers)

        assert not result.ok
        assert result.failure == "lookup_failed"
        assert result.reason == LOOKUP_FAILED_REASON
