from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class CorrelationMixin(BaseModel):
    """Mixin adding tracing fields to events."""

    correlation_id: str | None = Field(
        default=None, description="Primary correlation ID (e.g., order_id)"
    )
    causation_id: str | None = Field(default=None, description="ID of event that caused this one")


class OrderEvent(CorrelationMixin):
    """Event for order state transitions.

    Payment, SMS and push collaborators observe these and act on their own.
    """

    event_id: UUID = Field(default_factory=uuid4)
    event_type: Literal[
        "order.pending",
        "order.assigned",
        "order.picked_up",
        "order.in_transit",
        "order.delivered",
        "order.cancelled",
        "order.expired",
        "order.paid",
        "order.refunded",
    ]
    order_id: str
    timestamp: str
    user_id: str
    driver_id: str | None
    status: str
    previous_status: str | None = None
    payment_status: str
    total: int
    currency: str
    coupon_code: str | None = None
