"""Tests for the expired-order sweep and the expiring-soon query."""

import logging

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from parcel_engine.core.correlation import with_correlation
from parcel_engine.db.repositories.order_repository import OrderRepository
from parcel_engine.db.schema import DeliveryOrder as OrderRow
from parcel_engine.db.transaction import transaction
from parcel_engine.order import OrderStatus


@pytest.mark.unit
@pytest.mark.critical
class TestSweepExpiredOrders:
    def test_cancels_expired_orders(self, engine, place_order, clock, publisher):
        paid = place_order()
        unpaid = place_order(paid=False)
        clock.advance(minutes=31)

        assert engine.sweep_expired_orders() == 2

        for order_id in (paid.order_id, unpaid.order_id):
            order = engine.get_order(order_id)
            assert order.status == OrderStatus.CANCELLED
            assert order.timeline.cancelled_at == clock.now
            assert order.driver_id is None

        expired = publisher.of_type("order.expired")
        assert {e.order_id for e in expired} == {paid.order_id, unpaid.order_id}
        assert all(e.previous_status == "pending" for e in expired)

    def test_second_sweep_is_noop(self, engine, place_order, clock, publisher):
        place_order()
        clock.advance(minutes=31)

        assert engine.sweep_expired_orders() == 1
        assert engine.sweep_expired_orders() == 0
        assert len(publisher.of_type("order.expired")) == 1

    def test_leaves_unexpired_orders(self, engine, place_order, clock):
        order = place_order()
        clock.advance(minutes=29)

        assert engine.sweep_expired_orders() == 0
        assert engine.get_order(order.order_id).status == OrderStatus.PENDING

    def test_deadline_is_inclusive(self, engine, place_order, clock):
        order = place_order()
        assert engine.sweep_expired_orders(now=order.expires_at) == 1

    def test_accepted_order_is_never_swept(self, engine, place_order, clock):
        order = place_order()
        engine.accept_order(order.order_id, "driver-1")
        clock.advance(hours=2)

        assert engine.sweep_expired_orders() == 0
        assert engine.get_order(order.order_id).status == OrderStatus.ASSIGNED

    def test_assignment_during_sweep_wins(
        self, engine, place_order, clock, session_maker, monkeypatch
    ):
        order = place_order()
        clock.advance(minutes=31)
        original = OrderRepository.try_expire

        # A driver is assigned between candidate selection and the cancel
        def assign_first(self, order_id, now):
            with session_maker() as other, transaction(other):
                other.execute(
                    update(OrderRow)
                    .where(OrderRow.order_id == order_id)
                    .values(driver_id="driver-1", status="assigned", expires_at=None)
                )
            return original(self, order_id, now)

        monkeypatch.setattr(OrderRepository, "try_expire", assign_first)

        assert engine.sweep_expired_orders() == 0
        stored = engine.get_order(order.order_id)
        assert stored.status == OrderStatus.ASSIGNED
        assert stored.driver_id == "driver-1"

    def test_failure_on_one_order_does_not_stop_sweep(
        self, engine, place_order, clock, monkeypatch, caplog
    ):
        first = place_order()
        second = place_order()
        clock.advance(minutes=31)
        original = OrderRepository.try_expire

        def flaky(self, order_id, now):
            if order_id == first.order_id:
                raise OperationalError("UPDATE delivery_orders", {}, Exception("disk I/O error"))
            return original(self, order_id, now)

        monkeypatch.setattr(OrderRepository, "try_expire", flaky)

        with caplog.at_level(logging.ERROR):
            assert engine.sweep_expired_orders() == 1

        assert engine.get_order(first.order_id).status == OrderStatus.PENDING
        assert engine.get_order(second.order_id).status == OrderStatus.CANCELLED
        assert f"Failed to cancel expired order {first.order_id}" in caplog.text

    def test_events_carry_ambient_correlation(self, engine, place_order, clock, publisher):
        place_order()
        clock.advance(minutes=31)

        with with_correlation("sweep-test"):
            engine.sweep_expired_orders()

        assert publisher.of_type("order.expired")[0].correlation_id == "sweep-test"


@pytest.mark.unit
class TestExpiringSoon:
    def test_window(self, engine, place_order, clock):
        early = place_order()
        clock.advance(minutes=10)
        late = place_order()
        clock.advance(minutes=16)

        # early expires in 4 minutes, late in 14
        soon = engine.get_orders_expiring_soon()
        assert [o.order_id for o in soon] == [early.order_id]

        wider = engine.get_orders_expiring_soon(minutes=15)
        assert [o.order_id for o in wider] == [early.order_id, late.order_id]

    def test_excludes_assigned(self, engine, place_order, clock):
        order = place_order()
        engine.accept_order(order.order_id, "driver-1")
        clock.advance(minutes=27)
        assert engine.get_orders_expiring_soon() == []
