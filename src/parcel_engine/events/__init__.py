from .factory import EventFactory
from .publisher import EventPublisher, InMemoryEventPublisher, LoggingEventPublisher
from .schemas import CorrelationMixin, OrderEvent

__all__ = [
    "CorrelationMixin",
    "EventFactory",
    "EventPublisher",
    "InMemoryEventPublisher",
    "LoggingEventPublisher",
    "OrderEvent",
]
