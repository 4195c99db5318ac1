"""Order repository: conversions plus the atomic conditional updates that
serialize accept, status changes and expiry per order.

Every mutating method is a single ``UPDATE ... WHERE <preconditions>``;
success means exactly one row matched. Callers never read-then-write.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import ColumnElement, and_, func, or_, select, update
from sqlalchemy.orm import Session

from ...order import (
    ACTIVE_DRIVER_STATUSES,
    CouponSnapshot,
    DeliveryOrder,
    DistanceSnapshot,
    DriverStats,
    OrderPage,
    OrderStatus,
    PackageDetails,
    PaymentStatus,
    PricingSnapshot,
    Stop,
    Timeline,
)
from ...geo.distance import Coordinates
from ..schema import DeliveryOrder as OrderRow


class OrderRepository:
    """Repository for delivery order persistence."""

    def __init__(self, session: Session):
        self.session = session

    def insert(self, order: DeliveryOrder) -> None:
        self.session.add(self._to_row(order))

    def get(self, order_id: str) -> DeliveryOrder | None:
        """Get order by ID, returning domain model."""
        row = self.session.get(OrderRow, order_id, populate_existing=True)
        if row is None:
            return None
        return self._to_domain(row)

    def try_assign(self, order_id: str, driver_id: str, now: datetime) -> bool:
        """Compare-and-set pending -> assigned.

        Preconditions evaluated atomically: pending, unassigned, paid, not
        expired. Clears expires_at on success.
        """
        stmt = (
            update(OrderRow)
            .where(
                OrderRow.order_id == order_id,
                OrderRow.status == OrderStatus.PENDING.value,
                OrderRow.driver_id.is_(None),
                OrderRow.payment_status == PaymentStatus.PAID.value,
                or_(OrderRow.expires_at.is_(None), OrderRow.expires_at > now),
            )
            .values(
                driver_id=driver_id,
                status=OrderStatus.ASSIGNED.value,
                assigned_at=now,
                expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return self._rowcount(stmt) == 1

    def try_transition(
        self,
        order_id: str,
        driver_id: str,
        current: OrderStatus,
        new_status: OrderStatus,
        now: datetime,
    ) -> bool:
        """Compare-and-set a driver-owned order from ``current`` to ``new_status``."""
        values: dict[str, Any] = {"status": new_status.value, "updated_at": now}
        if new_status == OrderStatus.PICKED_UP:
            values["picked_up_at"] = now
            values["pickup_actual_at"] = now
        elif new_status == OrderStatus.DELIVERED:
            values["delivered_at"] = now
            values["dropoff_actual_at"] = now
        elif new_status == OrderStatus.CANCELLED:
            values["cancelled_at"] = now

        stmt = (
            update(OrderRow)
            .where(
                OrderRow.order_id == order_id,
                OrderRow.driver_id == driver_id,
                OrderRow.status == current.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self._rowcount(stmt) == 1

    def try_expire(self, order_id: str, now: datetime) -> bool:
        """Compare-and-set pending -> cancelled for an unassigned, expired order."""
        stmt = (
            update(OrderRow)
            .where(OrderRow.order_id == order_id, self._expired_clause(now))
            .values(
                status=OrderStatus.CANCELLED.value,
                cancelled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return self._rowcount(stmt) == 1

    def set_payment_status(
        self,
        order_id: str,
        payment_status: PaymentStatus,
        now: datetime,
        expected: PaymentStatus | None = None,
    ) -> bool:
        conditions: list[ColumnElement[bool]] = [OrderRow.order_id == order_id]
        if expected is not None:
            conditions.append(OrderRow.payment_status == expected.value)
        stmt = (
            update(OrderRow)
            .where(*conditions)
            .values(payment_status=payment_status.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self._rowcount(stmt) == 1

    def list_expired_ids(self, now: datetime) -> list[str]:
        stmt = (
            select(OrderRow.order_id)
            .where(self._expired_clause(now))
            .order_by(OrderRow.expires_at)
        )
        return list(self.session.execute(stmt).scalars().all())

    def list_expiring_between(self, start: datetime, end: datetime) -> list[DeliveryOrder]:
        stmt = (
            select(OrderRow)
            .where(
                OrderRow.status == OrderStatus.PENDING.value,
                OrderRow.driver_id.is_(None),
                OrderRow.expires_at >= start,
                OrderRow.expires_at <= end,
            )
            .order_by(OrderRow.expires_at)
        )
        return [self._to_domain(r) for r in self.session.execute(stmt).scalars().all()]

    def list_available(self, limit: int = 20, skip: int = 0) -> OrderPage:
        """Pending, unassigned, paid orders, newest first."""
        return self._page(
            and_(
                OrderRow.status == OrderStatus.PENDING.value,
                OrderRow.driver_id.is_(None),
                OrderRow.payment_status == PaymentStatus.PAID.value,
            ),
            limit,
            skip,
        )

    def list_by_driver(
        self,
        driver_id: str,
        status: OrderStatus | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> OrderPage:
        condition = OrderRow.driver_id == driver_id
        if status is not None:
            condition = and_(condition, OrderRow.status == status.value)
        return self._page(condition, limit, skip)

    def list_by_user(
        self,
        user_id: str,
        status: OrderStatus | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> OrderPage:
        condition = OrderRow.user_id == user_id
        if status is not None:
            condition = and_(condition, OrderRow.status == status.value)
        return self._page(condition, limit, skip)

    def driver_stats(self, driver_id: str) -> DriverStats:
        delivered = and_(
            OrderRow.driver_id == driver_id,
            OrderRow.status == OrderStatus.DELIVERED.value,
        )
        total_deliveries = self._count(delivered)
        active_orders = self._count(
            and_(
                OrderRow.driver_id == driver_id,
                OrderRow.status.in_([s.value for s in ACTIVE_DRIVER_STATUSES]),
            )
        )
        earnings_stmt = select(func.coalesce(func.sum(OrderRow.total), 0)).where(delivered)
        total_earnings = self.session.execute(earnings_stmt).scalar() or 0
        return DriverStats(
            total_deliveries=total_deliveries,
            active_orders=active_orders,
            total_earnings=int(total_earnings),
        )

    @staticmethod
    def _expired_clause(now: datetime) -> ColumnElement[bool]:
        return and_(
            OrderRow.status == OrderStatus.PENDING.value,
            OrderRow.driver_id.is_(None),
            OrderRow.expires_at.is_not(None),
            OrderRow.expires_at <= now,
        )

    def _rowcount(self, stmt: Any) -> int:
        result = self.session.execute(stmt)
        return int(result.rowcount)  # type: ignore[attr-defined]

    def _count(self, condition: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(OrderRow).where(condition)
        return self.session.execute(stmt).scalar() or 0

    def _page(self, condition: ColumnElement[bool], limit: int, skip: int) -> OrderPage:
        stmt = (
            select(OrderRow)
            .where(condition)
            .order_by(OrderRow.created_at.desc(), OrderRow.order_id.desc())
            .limit(limit)
            .offset(skip)
        )
        orders = [self._to_domain(r) for r in self.session.execute(stmt).scalars().all()]
        total = self._count(condition)
        return OrderPage(orders=orders, total=total, has_more=total > skip + limit)

    @staticmethod
    def _to_row(order: DeliveryOrder) -> OrderRow:
        pickup, dropoff = order.pickup, order.dropoff
        coupon = order.coupon
        return OrderRow(
            order_id=order.order_id,
            user_id=order.user_id,
            driver_id=order.driver_id,
            status=order.status.value,
            payment_status=order.payment_status.value,
            pickup_address=pickup.address,
            pickup_lat=pickup.coordinates.lat,
            pickup_lng=pickup.coordinates.lng,
            pickup_contact_name=pickup.contact_name,
            pickup_contact_phone=pickup.contact_phone,
            pickup_notes=pickup.notes,
            pickup_scheduled_at=pickup.scheduled_at,
            pickup_actual_at=pickup.actual_at,
            dropoff_address=dropoff.address,
            dropoff_lat=dropoff.coordinates.lat,
            dropoff_lng=dropoff.coordinates.lng,
            dropoff_contact_name=dropoff.contact_name,
            dropoff_contact_phone=dropoff.contact_phone,
            dropoff_notes=dropoff.notes,
            dropoff_scheduled_at=dropoff.scheduled_at,
            dropoff_actual_at=dropoff.actual_at,
            package_size=order.package.size,
            package_weight=order.package.weight,
            package_description=order.package.description,
            base_fee=order.pricing.base_fee,
            base_fare=order.pricing.base_fare,
            subtotal=order.pricing.subtotal,
            tax=order.pricing.tax,
            coupon_discount=order.pricing.coupon_discount,
            total=order.pricing.total,
            currency=order.pricing.currency,
            pricing_config_version=order.pricing_config_version,
            coupon_code=coupon.code if coupon else None,
            coupon_discount_type=coupon.discount_type if coupon else None,
            coupon_discount_value=coupon.discount_value if coupon else None,
            distance_km=order.distance.km,
            duration_minutes=order.distance.duration_minutes,
            created_at=order.timeline.created_at,
            assigned_at=order.timeline.assigned_at,
            picked_up_at=order.timeline.picked_up_at,
            delivered_at=order.timeline.delivered_at,
            cancelled_at=order.timeline.cancelled_at,
            expires_at=order.expires_at,
            updated_at=order.timeline.created_at,
        )

    @staticmethod
    def _to_domain(row: OrderRow) -> DeliveryOrder:
        """Convert ORM model to domain model."""
        coupon = None
        if row.coupon_code is not None:
            coupon = CouponSnapshot(
                code=row.coupon_code,
                discount_type=row.coupon_discount_type,  # type: ignore[arg-type]
                discount_value=row.coupon_discount_value,
            )

        return DeliveryOrder(
            order_id=row.order_id,
            user_id=row.user_id,
            driver_id=row.driver_id,
            status=OrderStatus(row.status),
            payment_status=PaymentStatus(row.payment_status),
            pickup=Stop(
                address=row.pickup_address,
                coordinates=Coordinates(lat=row.pickup_lat, lng=row.pickup_lng),
                contact_name=row.pickup_contact_name,
                contact_phone=row.pickup_contact_phone,
                notes=row.pickup_notes,
                scheduled_at=row.pickup_scheduled_at,
                actual_at=row.pickup_actual_at,
            ),
            dropoff=Stop(
                address=row.dropoff_address,
                coordinates=Coordinates(lat=row.dropoff_lat, lng=row.dropoff_lng),
                contact_name=row.dropoff_contact_name,
                contact_phone=row.dropoff_contact_phone,
                notes=row.dropoff_notes,
                scheduled_at=row.dropoff_scheduled_at,
                actual_at=row.dropoff_actual_at,
            ),
            package=PackageDetails(
                size=row.package_size,  # type: ignore[arg-type]
                weight=row.package_weight,
                description=row.package_description,
            ),
            pricing=PricingSnapshot(
                base_fee=row.base_fee,
                base_fare=row.base_fare,
                subtotal=row.subtotal,
                tax=row.tax,
                coupon_discount=row.coupon_discount,
                total=row.total,
                currency=row.currency,
            ),
            coupon=coupon,
            distance=DistanceSnapshot(km=row.distance_km, duration_minutes=row.duration_minutes),
            timeline=Timeline(
                created_at=row.created_at,
                assigned_at=row.assigned_at,
                picked_up_at=row.picked_up_at,
                delivered_at=row.delivered_at,
                cancelled_at=row.cancelled_at,
            ),
            expires_at=row.expires_at,
            pricing_config_version=row.pricing_config_version,
        )
