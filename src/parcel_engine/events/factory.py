"""Event factory for creating order events with tracing fields."""

from typing import Any

from ..core.correlation import get_current_correlation_id
from ..order import DeliveryOrder
from .schemas import OrderEvent


class EventFactory:
    """Factory for creating events with tracing fields populated."""

    @staticmethod
    def create_for_order(
        event_type: str,
        order: DeliveryOrder,
        *,
        timestamp: str,
        previous_status: str | None = None,
        causation_id: str | None = None,
        **kwargs: Any,
    ) -> OrderEvent:
        """Create an order event correlated by order_id.

        Falls back to the ambient correlation ID when one is set, so events
        raised inside a request carry that request's ID.
        """
        return OrderEvent(
            event_type=event_type,  # type: ignore[arg-type]
            order_id=order.order_id,
            timestamp=timestamp,
            user_id=order.user_id,
            driver_id=order.driver_id,
            status=order.status.value,
            previous_status=previous_status,
            payment_status=order.payment_status.value,
            total=order.pricing.total,
            currency=order.pricing.currency,
            coupon_code=order.coupon.code if order.coupon else None,
            correlation_id=get_current_correlation_id() or order.order_id,
            causation_id=causation_id,
            **kwargs,
        )
