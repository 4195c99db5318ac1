"""Tests for order creation, accept and driver status updates."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from parcel_engine.core.exceptions import (
    ConflictError,
    ExpiredError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ServiceAreaError,
    UpstreamUnavailableError,
    ValidationError,
)
from parcel_engine.coupons.models import DiscountType
from parcel_engine.order import (
    DRIVER_TRANSITIONS,
    OrderStatus,
    PaymentStatus,
    can_transition,
)
from tests.factories import VANCOUVER

# Path from assigned to each reachable status
_PATHS = {
    OrderStatus.ASSIGNED: [],
    OrderStatus.PICKED_UP: [OrderStatus.PICKED_UP],
    OrderStatus.IN_TRANSIT: [OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT],
    OrderStatus.DELIVERED: [
        OrderStatus.PICKED_UP,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
    ],
    OrderStatus.CANCELLED: [OrderStatus.CANCELLED],
}


def _assigned_to(engine, place_order, status, driver_id="driver-1"):
    order = place_order()
    engine.accept_order(order.order_id, driver_id)
    for step in _PATHS[status]:
        engine.update_order_status(order.order_id, driver_id, step)
    return order.order_id


@pytest.mark.unit
@pytest.mark.critical
class TestCreateOrder:
    def test_new_order_is_pending_and_unpaid(self, engine, place_order, clock):
        order = place_order(paid=False)

        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.UNPAID
        assert order.driver_id is None
        assert order.order_id.startswith("ORD-")
        assert order.expires_at == clock.now + timedelta(minutes=30)
        assert order.timeline.created_at == clock.now
        assert order.pricing_config_version == 1

    def test_pricing_is_computed_server_side(self, engine, place_order):
        order = place_order(paid=False)
        pricing = order.pricing

        assert pricing.base_fee == 300
        assert pricing.base_fare == 1587
        assert pricing.coupon_discount == 0
        assert pricing.subtotal == 1587
        assert pricing.tax == 79
        assert pricing.total == 1666
        assert pricing.currency == "CAD"
        assert order.distance.km == 12.0
        assert order.distance.duration_minutes == 25

    def test_persisted_order_round_trips(self, engine, place_order):
        order = place_order(paid=False)
        stored = engine.get_order(order.order_id)
        assert stored == order

    def test_publishes_pending_event(self, engine, place_order, publisher):
        order = place_order(paid=False)
        events = publisher.of_type("order.pending")
        assert len(events) == 1
        assert events[0].order_id == order.order_id
        assert events[0].total == 1666
        assert events[0].correlation_id == order.order_id

    def test_owner_required(self, engine, order_factory):
        with pytest.raises(ValidationError):
            engine.create_order(
                order_factory.stop(), order_factory.stop(), order_factory.package(), owner_id=""
            )

    def test_outside_service_area_is_not_persisted(self, engine, place_order):
        with pytest.raises(ServiceAreaError):
            place_order(dropoff=VANCOUVER)
        assert engine.list_user_orders("user-1").total == 0

    def test_upstream_failure_is_not_persisted(self, engine, place_order, distance_provider):
        distance_provider.error = UpstreamUnavailableError("OSRM down")
        with pytest.raises(UpstreamUnavailableError):
            place_order()
        assert engine.list_user_orders("user-1").total == 0

    def test_keeps_pricing_version_after_republish(self, engine, place_order, payload):
        order = place_order(paid=False)
        payload["rate_card"]["base_cents"] = 0
        engine.config_store.publish(payload)

        assert engine.get_order(order.order_id).pricing_config_version == 1
        assert engine.get_order(order.order_id).pricing.total == 1666
        assert place_order(paid=False).pricing_config_version == 2


@pytest.mark.unit
@pytest.mark.critical
class TestCreateOrderWithCoupon:
    @pytest.mark.parametrize(
        "discount_type,value,discount,total",
        [
            (DiscountType.FIXED_DISCOUNT, 500, 500, 1141),
            (DiscountType.PERCENTAGE_DISCOUNT, 10, 158, 1500),
            (DiscountType.ELIMINATE_FEE, None, 300, 1351),
        ],
    )
    def test_discount_applied_before_tax(
        self, engine, place_order, coupon_engine, discount_type, value, discount, total
    ):
        coupon_engine.create_coupon(code="PROMO", discount_type=discount_type, discount_value=value)
        order = place_order(paid=False, coupon_code="promo")

        assert order.pricing.coupon_discount == discount
        assert order.pricing.subtotal == 1587 - discount
        assert order.pricing.total == total
        assert order.coupon.code == "PROMO"
        assert order.coupon.discount_type == discount_type.value

    def test_usage_recorded(self, engine, place_order, coupon_engine):
        coupon_engine.create_coupon(code="PROMO", discount_type="fixed_discount", discount_value=500)
        place_order(coupon_code="PROMO")
        assert coupon_engine.get_coupon("PROMO").current_uses_total == 1

    def test_second_use_hits_per_user_limit(self, engine, place_order, coupon_engine):
        coupon_engine.create_coupon(code="ONCE", discount_type="fixed_discount", discount_value=500)
        place_order(coupon_code="ONCE")

        with pytest.raises(ValidationError, match="maximum number of times"):
            place_order(coupon_code="ONCE")
        assert engine.list_user_orders("user-1").total == 1

    def test_invalid_coupon_rejects_order(self, engine, place_order):
        with pytest.raises(ValidationError, match="Invalid coupon code"):
            place_order(coupon_code="NOPE")
        assert engine.list_user_orders("user-1").total == 0

    def test_snapshot_survives_coupon_edits(self, engine, place_order, coupon_engine):
        coupon_engine.create_coupon(code="PROMO", discount_type="fixed_discount", discount_value=500)
        order = place_order(coupon_code="PROMO")
        coupon_engine.update_coupon("PROMO", discount_value=100)

        stored = engine.get_order(order.order_id)
        assert stored.coupon.discount_value == 500
        assert stored.pricing.coupon_discount == 500


@pytest.mark.unit
@pytest.mark.critical
class TestAcceptOrder:
    def test_accept_assigns_driver(self, engine, place_order, clock, publisher):
        order = place_order()
        accepted = engine.accept_order(order.order_id, "driver-1")

        assert accepted.status == OrderStatus.ASSIGNED
        assert accepted.driver_id == "driver-1"
        assert accepted.timeline.assigned_at == clock.now
        assert accepted.expires_at is None

        event = publisher.of_type("order.assigned")[0]
        assert event.driver_id == "driver-1"
        assert event.previous_status == "pending"

    def test_exactly_one_concurrent_accept_wins(self, engine, place_order):
        order = place_order()
        drivers = [f"driver-{i}" for i in range(8)]
        barrier = threading.Barrier(len(drivers))
        outcomes: dict[str, str] = {}

        def attempt(driver_id: str) -> None:
            barrier.wait()
            try:
                engine.accept_order(order.order_id, driver_id)
                outcomes[driver_id] = "won"
            except ConflictError:
                outcomes[driver_id] = "conflict"
            except Exception as e:
                outcomes[driver_id] = repr(e)

        with ThreadPoolExecutor(max_workers=len(drivers)) as pool:
            list(pool.map(attempt, drivers))

        assert sorted(outcomes.values()) == ["conflict"] * 7 + ["won"]
        winner = next(d for d, outcome in outcomes.items() if outcome == "won")
        assert engine.get_order(order.order_id).driver_id == winner

    def test_second_accept_conflicts(self, engine, place_order):
        order = place_order()
        engine.accept_order(order.order_id, "driver-1")
        with pytest.raises(ConflictError):
            engine.accept_order(order.order_id, "driver-2")
        assert engine.get_order(order.order_id).driver_id == "driver-1"

    def test_same_driver_cannot_accept_twice(self, engine, place_order):
        order = place_order()
        engine.accept_order(order.order_id, "driver-1")
        with pytest.raises(ConflictError):
            engine.accept_order(order.order_id, "driver-1")

    def test_unknown_order(self, engine):
        with pytest.raises(NotFoundError):
            engine.accept_order("ORD-0-MISSING", "driver-1")

    def test_unpaid_order(self, engine, place_order):
        order = place_order(paid=False)
        with pytest.raises(ValidationError):
            engine.accept_order(order.order_id, "driver-1")
        assert engine.get_order(order.order_id).status == OrderStatus.PENDING

    def test_requires_driver_role(self, engine, place_order):
        order = place_order()
        with pytest.raises(ForbiddenError):
            engine.accept_order(order.order_id, "user-9", roles=("customer",))

    def test_expired_at_deadline(self, engine, place_order, clock):
        order = place_order()
        clock.advance(minutes=30)
        with pytest.raises(ExpiredError):
            engine.accept_order(order.order_id, "driver-1")

    def test_just_before_deadline(self, engine, place_order, clock):
        order = place_order()
        clock.advance(minutes=29, seconds=59)
        assert engine.accept_order(order.order_id, "driver-1").driver_id == "driver-1"

    def test_expired_after_sweep(self, engine, place_order, clock):
        order = place_order()
        clock.advance(minutes=31)
        engine.sweep_expired_orders()
        with pytest.raises(ExpiredError):
            engine.accept_order(order.order_id, "driver-1")


@pytest.mark.unit
@pytest.mark.critical
class TestUpdateOrderStatus:
    def test_full_delivery(self, engine, place_order, clock, publisher):
        order_id = _assigned_to(engine, place_order, OrderStatus.ASSIGNED)

        clock.advance(minutes=10)
        picked = engine.update_order_status(order_id, "driver-1", OrderStatus.PICKED_UP)
        assert picked.timeline.picked_up_at == clock.now
        assert picked.pickup.actual_at == clock.now

        engine.update_order_status(order_id, "driver-1", "in_transit")

        clock.advance(minutes=20)
        delivered = engine.update_order_status(order_id, "driver-1", OrderStatus.DELIVERED)
        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.timeline.delivered_at == clock.now
        assert delivered.dropoff.actual_at == clock.now
        assert delivered.is_terminal

        event_types = [e.event_type for e in publisher.events]
        assert event_types[-3:] == ["order.picked_up", "order.in_transit", "order.delivered"]

    def test_driver_cancel_stamps_time(self, engine, place_order, clock):
        order_id = _assigned_to(engine, place_order, OrderStatus.PICKED_UP)
        cancelled = engine.update_order_status(order_id, "driver-1", OrderStatus.CANCELLED)
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.timeline.cancelled_at == clock.now

    @pytest.mark.parametrize("current", list(_PATHS))
    @pytest.mark.parametrize("requested", list(OrderStatus))
    def test_transition_table(self, engine, place_order, current, requested):
        order_id = _assigned_to(engine, place_order, current)

        if can_transition(current, requested):
            assert engine.update_order_status(order_id, "driver-1", requested).status == requested
        else:
            with pytest.raises(InvalidTransitionError) as exc_info:
                engine.update_order_status(order_id, "driver-1", requested)
            assert exc_info.value.current == current.value
            assert engine.get_order(order_id).status == current

    def test_pending_has_no_driver_transitions(self):
        assert DRIVER_TRANSITIONS[OrderStatus.PENDING] == frozenset()

    def test_terminal_states_have_no_exits(self):
        for status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            assert status.is_terminal
            assert DRIVER_TRANSITIONS[status] == frozenset()

    def test_other_driver_forbidden(self, engine, place_order):
        order_id = _assigned_to(engine, place_order, OrderStatus.ASSIGNED)
        with pytest.raises(ForbiddenError):
            engine.update_order_status(order_id, "driver-2", OrderStatus.PICKED_UP)
        assert engine.get_order(order_id).status == OrderStatus.ASSIGNED

    def test_unassigned_order_forbidden(self, engine, place_order):
        order = place_order()
        with pytest.raises(ForbiddenError):
            engine.update_order_status(order.order_id, "driver-1", OrderStatus.PICKED_UP)

    def test_unknown_status(self, engine, place_order):
        order_id = _assigned_to(engine, place_order, OrderStatus.ASSIGNED)
        with pytest.raises(ValidationError):
            engine.update_order_status(order_id, "driver-1", "lost")

    def test_unknown_order(self, engine):
        with pytest.raises(NotFoundError):
            engine.update_order_status("ORD-0-MISSING", "driver-1", OrderStatus.PICKED_UP)


@pytest.mark.unit
class TestPaymentStatus:
    def test_mark_paid(self, engine, place_order, publisher):
        order = place_order(paid=False)
        paid = engine.mark_paid(order.order_id)
        assert paid.payment_status == PaymentStatus.PAID
        assert len(publisher.of_type("order.paid")) == 1

    def test_mark_paid_is_idempotent(self, engine, place_order, publisher):
        order = place_order()
        assert engine.mark_paid(order.order_id).payment_status == PaymentStatus.PAID
        assert len(publisher.of_type("order.paid")) == 1

    def test_refund(self, engine, place_order):
        order = place_order()
        assert engine.mark_refunded(order.order_id).payment_status == PaymentStatus.REFUNDED

    def test_refund_unpaid_conflicts(self, engine, place_order):
        order = place_order(paid=False)
        with pytest.raises(ConflictError):
            engine.mark_refunded(order.order_id)

    def test_paying_refunded_conflicts(self, engine, place_order):
        order = place_order()
        engine.mark_refunded(order.order_id)
        with pytest.raises(ConflictError):
            engine.mark_paid(order.order_id)

    def test_unknown_order(self, engine):
        with pytest.raises(NotFoundError):
            engine.mark_paid("ORD-0-MISSING")
