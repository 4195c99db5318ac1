"""Order engine: pricing quotes, order creation and the order state machine.

All order mutations go through single conditional UPDATEs in the
repository, so concurrent request handlers, drivers and the expiry sweep
can call in without any in-process locking.
"""

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import NoReturn

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .core.exceptions import (
    ConfigurationError,
    ConflictError,
    EngineError,
    ExpiredError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ServiceAreaError,
    ValidationError,
)
from .coupons.engine import CouponEngine, calculate_discount
from .coupons.models import AccountType, CouponPreview
from .db.repositories.order_repository import OrderRepository
from .db.transaction import transaction
from .db.utils import as_utc, utc_now
from .events.factory import EventFactory
from .events.publisher import EventPublisher
from .fare import FareBreakdown, FareCalculator, format_fare_display
from .geo.distance import Coordinates, is_valid_coordinates
from .geo.routing import DistanceProvider, RouteResult
from .geo.service_area import ServiceAreaResult, ServiceAreaValidator
from .order import (
    CouponSnapshot,
    DeliveryOrder,
    DistanceSnapshot,
    DriverStats,
    OrderPage,
    OrderStatus,
    PackageDetails,
    PaymentStatus,
    Stop,
    Timeline,
    can_transition,
    generate_order_id,
)
from .parcel_logging.context import log_context, log_order_context
from .pricing.config import PACKAGE_SIZES, PricingConfig
from .pricing.config_store import PricingConfigStore

logger = logging.getLogger(__name__)

DRIVER_ROLE = "driver"
MAX_PAGE_SIZE = 100


class FareEstimate(BaseModel):
    fare: FareBreakdown
    pickup_area_label: str
    dropoff_area_label: str
    pricing_config_version: int
    display: str


class FareRange(BaseModel):
    min: int
    max: int
    currency: str
    min_display: str
    max_display: str


class _Quote(BaseModel):
    config: PricingConfig
    config_version: int
    area: ServiceAreaResult
    route: RouteResult


@contextmanager
def _persistence_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        raise PersistenceError(f"{operation} failed: {e}") from e


class OrderEngine:
    def __init__(
        self,
        session_maker: sessionmaker[Session],
        config_store: PricingConfigStore,
        distance_provider: DistanceProvider,
        coupon_engine: CouponEngine | None = None,
        event_publisher: EventPublisher | None = None,
        order_expiry_minutes: int = 30,
        expiring_soon_minutes: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_maker = session_maker
        self._config_store = config_store
        self._distance_provider = distance_provider
        self._coupon_engine = coupon_engine
        self._event_publisher = event_publisher
        self._order_expiry = timedelta(minutes=order_expiry_minutes)
        self._expiring_soon_minutes = expiring_soon_minutes
        self._clock = clock
        self._validator = ServiceAreaValidator()
        self._calculator = FareCalculator()

    @property
    def config_store(self) -> PricingConfigStore:
        return self._config_store

    # Quotes

    def get_fare_estimate(
        self, pickup: Coordinates, dropoff: Coordinates, package_size: str
    ) -> FareEstimate:
        quote = self._quote(pickup, dropoff)
        fare = self._calculator.calculate(
            quote.route.distance_km, package_size, quote.config, quote.route.duration_minutes
        )
        assert quote.area.pickup_area_label is not None
        assert quote.area.dropoff_area_label is not None
        return FareEstimate(
            fare=fare,
            pickup_area_label=quote.area.pickup_area_label,
            dropoff_area_label=quote.area.dropoff_area_label,
            pricing_config_version=quote.config_version,
            display=format_fare_display(fare.total, fare.currency),
        )

    def get_fare_range(self, pickup: Coordinates, dropoff: Coordinates) -> FareRange:
        """Cheapest and most expensive fare across package sizes for one route."""
        quote = self._quote(pickup, dropoff)
        smallest, largest = PACKAGE_SIZES[0], PACKAGE_SIZES[-1]
        low = self._calculator.calculate(
            quote.route.distance_km, smallest, quote.config, quote.route.duration_minutes
        )
        high = self._calculator.calculate(
            quote.route.distance_km, largest, quote.config, quote.route.duration_minutes
        )
        return FareRange(
            min=low.total,
            max=high.total,
            currency=low.currency,
            min_display=format_fare_display(low.total, low.currency),
            max_display=format_fare_display(high.total, high.currency),
        )

    def validate_coupon(
        self,
        code: str,
        user_id: str,
        subtotal_cents: int,
        account_type: AccountType | None = None,
    ) -> CouponPreview:
        if subtotal_cents < 0:
            raise ValidationError("Subtotal must be non-negative")
        coupon_engine = self._require_coupon_engine()
        base_fee = self._config_store.get_active().payload.rate_card.base_cents
        with log_context(user_id=user_id, coupon_code=code):
            return coupon_engine.preview(code, user_id, subtotal_cents, base_fee, account_type)

    def _quote(self, pickup: Coordinates, dropoff: Coordinates) -> _Quote:
        for name, point in (("pickup", pickup), ("dropoff", dropoff)):
            if not is_valid_coordinates(point):
                raise ValidationError(f"Invalid {name} coordinates", {name: point.as_tuple()})

        active = self._config_store.get_active()
        config = active.payload

        area = self._validator.validate(pickup, dropoff, config.service_area.centers)
        if not area.ok:
            raise ServiceAreaError(
                area.reason or "Location is outside our service area",
                endpoint=area.failure,
                details={"pickup": pickup.as_tuple(), "dropoff": dropoff.as_tuple()},
            )

        # Upstream errors propagate; never price on a guessed distance.
        route = self._distance_provider.compute_route(pickup, dropoff)
        return _Quote(config=config, config_version=active.version, area=area, route=route)

    # Order creation

    def create_order(
        self,
        pickup: Stop,
        dropoff: Stop,
        package: PackageDetails,
        owner_id: str,
        coupon_code: str | None = None,
        account_type: AccountType | None = None,
    ) -> DeliveryOrder:
        """Price and persist a new order in ``pending``/``unpaid``.

        Pricing is always computed here from the active config; the caller
        never supplies amounts. A coupon, if given, must validate or the
        order is rejected.
        """
        if not owner_id:
            raise ValidationError("Order owner is required")

        now = self._clock()
        quote = self._quote(pickup.coordinates, dropoff.coordinates)
        fare = self._calculator.calculate(
            quote.route.distance_km, package.size, quote.config, quote.route.duration_minutes
        )

        coupon_snapshot: CouponSnapshot | None = None
        discount = 0
        if coupon_code:
            coupon_engine = self._require_coupon_engine()
            result = coupon_engine.validate(coupon_code, owner_id, fare.base_fare, account_type, now)
            if not result.valid or result.coupon is None:
                raise ValidationError(
                    result.reason or "Invalid coupon code", {"coupon_code": coupon_code}
                )
            discount = calculate_discount(result.coupon, fare.base_fare, fare.base_fee)
            coupon_snapshot = coupon_engine.snapshot(result.coupon)

        order = DeliveryOrder(
            order_id=generate_order_id(),
            user_id=owner_id,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            pickup=pickup,
            dropoff=dropoff,
            package=package,
            pricing=self._calculator.apply_discount(fare, discount, quote.config.tax),
            coupon=coupon_snapshot,
            distance=DistanceSnapshot(
                km=quote.route.distance_km, duration_minutes=quote.route.duration_minutes
            ),
            timeline=Timeline(created_at=now),
            expires_at=now + self._order_expiry,
            pricing_config_version=quote.config_version,
        )

        with log_order_context(order.order_id, user_id=owner_id):
            with _persistence_errors("Order insert"):
                with self._session_maker() as session, transaction(session):
                    OrderRepository(session).insert(order)

            logger.info(
                f"Order created: total={order.pricing.total} {order.pricing.currency} "
                f"distance={order.distance.km}km"
            )

            if coupon_snapshot is not None and self._coupon_engine is not None:
                self._coupon_engine.record_usage(coupon_snapshot.code, owner_id, order.order_id)

            self._publish(OrderStatus.PENDING.to_event_type(), order, now)

        return order

    # State machine

    def accept_order(
        self, order_id: str, driver_id: str, roles: Sequence[str] = (DRIVER_ROLE,)
    ) -> DeliveryOrder:
        """Assign a pending, paid, unexpired order to a driver.

        Exactly one of any number of concurrent callers succeeds; the rest
        get ConflictError.
        """
        if DRIVER_ROLE not in roles:
            raise ForbiddenError("Only drivers can accept orders", {"driver_id": driver_id})

        now = self._clock()
        order: DeliveryOrder | None = None
        with log_order_context(order_id, driver_id=driver_id):
            with _persistence_errors("Order accept"):
                with self._session_maker() as session, transaction(session):
                    repo = OrderRepository(session)
                    if repo.try_assign(order_id, driver_id, now):
                        order = repo.get(order_id)
                    else:
                        self._raise_accept_failure(repo.get(order_id), order_id, now)

            assert order is not None
            logger.info("Order accepted")
            self._publish(
                OrderStatus.ASSIGNED.to_event_type(),
                order,
                now,
                previous_status=OrderStatus.PENDING.value,
            )
            return order

    @staticmethod
    def _raise_accept_failure(
        order: DeliveryOrder | None, order_id: str, now: datetime
    ) -> NoReturn:
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.driver_id is None and order.is_expired(now):
            raise ExpiredError(
                f"Order {order_id} has expired",
                {"expires_at": order.expires_at.isoformat() if order.expires_at else None},
            )
        if (
            order.status == OrderStatus.PENDING
            and order.driver_id is None
            and order.payment_status != PaymentStatus.PAID
        ):
            raise ValidationError(
                f"Order {order_id} has not been paid",
                {"payment_status": order.payment_status.value},
            )
        raise ConflictError(
            f"Order {order_id} is no longer available",
            {"status": order.status.value},
        )

    def update_order_status(
        self, order_id: str, driver_id: str, new_status: OrderStatus | str
    ) -> DeliveryOrder:
        """Move a driver's order along pickup, transit and delivery, or cancel it."""
        try:
            requested = OrderStatus(new_status)
        except ValueError as e:
            raise ValidationError(f"Unknown order status: {new_status}") from e

        now = self._clock()
        with log_order_context(order_id, driver_id=driver_id):
            with _persistence_errors("Order status update"):
                with self._session_maker() as session, transaction(session):
                    repo = OrderRepository(session)
                    current = repo.get(order_id)
                    if current is None:
                        raise NotFoundError(f"Order {order_id} not found")
                    if current.driver_id != driver_id:
                        raise ForbiddenError(
                            "Order is not assigned to this driver", {"driver_id": driver_id}
                        )
                    if not can_transition(current.status, requested):
                        raise InvalidTransitionError(current.status.value, requested.value)

                    if not repo.try_transition(order_id, driver_id, current.status, requested, now):
                        # Another update moved the order between read and write
                        latest = repo.get(order_id)
                        actual = latest.status.value if latest else current.status.value
                        raise InvalidTransitionError(actual, requested.value)

                    order = repo.get(order_id)

            assert order is not None
            logger.info(f"Order status: {current.status.value} -> {requested.value}")
            self._publish(
                requested.to_event_type(), order, now, previous_status=current.status.value
            )
            return order

    def sweep_expired_orders(self, now: datetime | None = None) -> int:
        """Cancel every pending, unassigned order whose deadline has passed.

        Safe to re-run and to run alongside accept: each order is cancelled
        through its own conditional update, so a second sweep or a winning
        accept makes it a no-op for that order.
        """
        now = as_utc(now) if now is not None else self._clock()

        with _persistence_errors("Expired order lookup"):
            with self._session_maker() as session:
                candidates = OrderRepository(session).list_expired_ids(now)

        cancelled = 0
        for order_id in candidates:
            try:
                with self._session_maker() as session, transaction(session):
                    repo = OrderRepository(session)
                    if not repo.try_expire(order_id, now):
                        continue
                    order = repo.get(order_id)
            except (SQLAlchemyError, EngineError) as e:
                logger.error(
                    f"Failed to cancel expired order {order_id}: {e}",
                    extra={"order_id": order_id},
                )
                continue

            cancelled += 1
            if order is not None:
                self._publish(
                    "order.expired", order, now, previous_status=OrderStatus.PENDING.value
                )

        if candidates:
            logger.info(f"Expiry sweep cancelled {cancelled} of {len(candidates)} candidate orders")
        return cancelled

    # Payment status, set by the external payment collaborator

    def mark_paid(self, order_id: str) -> DeliveryOrder:
        return self._set_payment(order_id, PaymentStatus.PAID, expected=PaymentStatus.UNPAID)

    def mark_refunded(self, order_id: str) -> DeliveryOrder:
        return self._set_payment(order_id, PaymentStatus.REFUNDED, expected=PaymentStatus.PAID)

    def _set_payment(
        self, order_id: str, payment_status: PaymentStatus, expected: PaymentStatus
    ) -> DeliveryOrder:
        now = self._clock()
        with log_order_context(order_id):
            with _persistence_errors("Payment status update"):
                with self._session_maker() as session, transaction(session):
                    repo = OrderRepository(session)
                    changed = repo.set_payment_status(order_id, payment_status, now, expected)
                    order = repo.get(order_id)

            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            if not changed:
                if order.payment_status == payment_status:
                    return order
                raise ConflictError(
                    f"Cannot mark order {payment_status.value}: payment is "
                    f"{order.payment_status.value}",
                    {"payment_status": order.payment_status.value},
                )

            logger.info(f"Payment status: {expected.value} -> {payment_status.value}")
            self._publish(f"order.{payment_status.value}", order, now)
            return order

    # Queries

    def get_order(self, order_id: str) -> DeliveryOrder:
        with self._session_maker() as session:
            order = OrderRepository(session).get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def list_available_orders(self, limit: int = 20, skip: int = 0) -> OrderPage:
        self._check_page(limit, skip)
        with self._session_maker() as session:
            return OrderRepository(session).list_available(limit, skip)

    def list_driver_orders(
        self,
        driver_id: str,
        status: OrderStatus | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> OrderPage:
        self._check_page(limit, skip)
        with self._session_maker() as session:
            return OrderRepository(session).list_by_driver(driver_id, status, limit, skip)

    def list_user_orders(
        self,
        user_id: str,
        status: OrderStatus | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> OrderPage:
        self._check_page(limit, skip)
        with self._session_maker() as session:
            return OrderRepository(session).list_by_user(user_id, status, limit, skip)

    def get_driver_stats(self, driver_id: str) -> DriverStats:
        with self._session_maker() as session:
            return OrderRepository(session).driver_stats(driver_id)

    def get_orders_expiring_soon(
        self, minutes: int | None = None, now: datetime | None = None
    ) -> list[DeliveryOrder]:
        now = as_utc(now) if now is not None else self._clock()
        window = timedelta(minutes=minutes if minutes is not None else self._expiring_soon_minutes)
        with self._session_maker() as session:
            return OrderRepository(session).list_expiring_between(now, now + window)

    @staticmethod
    def _check_page(limit: int, skip: int) -> None:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if skip < 0:
            raise ValidationError("skip must be non-negative")

    def _require_coupon_engine(self) -> CouponEngine:
        if self._coupon_engine is None:
            raise ConfigurationError("Coupons are not enabled")
        return self._coupon_engine

    def _publish(
        self,
        event_type: str,
        order: DeliveryOrder,
        now: datetime,
        previous_status: str | None = None,
    ) -> None:
        if self._event_publisher is None:
            return
        event = EventFactory.create_for_order(
            event_type, order, timestamp=now.isoformat(), previous_status=previous_status
        )
        try:
            self._event_publisher.publish(event)
        except Exception as e:
            # Observers act independently; a failed publish never undoes the write
            logger.error(f"Failed to publish {event_type} for {order.order_id}: {e}")
