import logging
import threading
from typing import Protocol

from .schemas import OrderEvent

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    def publish(self, event: OrderEvent) -> None: ...


class InMemoryEventPublisher:
    """Collects published events in order. Used by tests and local runs."""

    def __init__(self) -> None:
        self._events: list[OrderEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: OrderEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[OrderEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: str) -> list[OrderEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class LoggingEventPublisher:
    """Writes each event as a structured log line."""

    def publish(self, event: OrderEvent) -> None:
        logger.info(
            f"Event {event.event_type} for {event.order_id}",
            extra={
                "order_id": event.order_id,
                "driver_id": event.driver_id,
                "correlation_id": event.correlation_id,
                "event": event.model_dump(mode="json"),
            },
        )
