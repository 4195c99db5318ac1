"""Delivery order aggregate and its status state machine."""

import secrets
import string
import time
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .geo.distance import Coordinates
from .pricing.config import PackageSize


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def to_event_type(self) -> str:
        """Convert status to event type (e.g., 'order.picked_up')."""
        return f"order.{self.value}"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
)

# Transitions a driver may request through update_order_status. PENDING ->
# ASSIGNED happens only through accept; PENDING -> CANCELLED only through
# the expiry sweep.
DRIVER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.PICKED_UP, OrderStatus.CANCELLED}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ACTIVE_DRIVER_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.ASSIGNED, OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT}
)


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in DRIVER_TRANSITIONS[current]


class Stop(BaseModel):
    """Pickup or dropoff endpoint."""

    address: str = Field(min_length=1)
    coordinates: Coordinates
    contact_name: str = Field(min_length=1)
    contact_phone: str = Field(min_length=1)
    notes: str | None = None
    scheduled_at: datetime | None = None
    actual_at: datetime | None = None


class PackageDetails(BaseModel):
    size: PackageSize
    weight: str | None = None
    description: str | None = None


class PricingSnapshot(BaseModel):
    """Price frozen onto the order at creation time.

    ``base_fare`` is the undiscounted pre-tax fare, ``base_fee`` the
    platform fee inside it. ``subtotal = base_fare - coupon_discount`` and
    ``total = subtotal + tax``.
    """

    model_config = ConfigDict(frozen=True)

    base_fee: int = Field(ge=0)
    base_fare: int = Field(ge=0)
    subtotal: int = Field(ge=0)
    tax: int = Field(ge=0)
    coupon_discount: int = Field(default=0, ge=0)
    total: int = Field(ge=0)
    currency: str


class CouponSnapshot(BaseModel):
    """Coupon terms at redemption time, decoupled from the live coupon."""

    model_config = ConfigDict(frozen=True)

    code: str
    discount_type: Literal["eliminate_fee", "fixed_discount", "percentage_discount"]
    discount_value: int | None = None


class DistanceSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    km: float = Field(ge=0)
    duration_minutes: int = Field(ge=0)


class Timeline(BaseModel):
    created_at: datetime
    assigned_at: datetime | None = None
    picked_up_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None


class DeliveryOrder(BaseModel):
    """Delivery order as read back from the repository."""

    order_id: str
    user_id: str
    driver_id: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    pickup: Stop
    dropoff: Stop
    package: PackageDetails
    pricing: PricingSnapshot
    coupon: CouponSnapshot | None = None
    distance: DistanceSnapshot
    timeline: Timeline
    expires_at: datetime | None = None
    pricing_config_version: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_expired(self, now: datetime) -> bool:
        """Orders without expires_at never expire."""
        return self.expires_at is not None and self.expires_at <= now


class OrderPage(BaseModel):
    orders: list[DeliveryOrder]
    total: int
    has_more: bool


class DriverStats(BaseModel):
    total_deliveries: int
    active_orders: int
    total_earnings: int


_ORDER_ID_ALPHABET = string.digits + string.ascii_uppercase


def generate_order_id() -> str:
    """Human-shareable order ID: ORD-<epoch ms>-<7 base36 chars>."""
    suffix = "".join(secrets.choice(_ORDER_ID_ALPHABET) for _ in range(7))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"
