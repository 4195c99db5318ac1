"""Standardized exception hierarchy for the pricing and order engine."""

from typing import Any


class EngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(EngineError):
    """Errors that may succeed on retry."""

    pass


class NetworkError(TransientError):
    """Network-related transient errors (timeout, connection refused)."""

    pass


class ServiceUnavailableError(TransientError):
    """External service temporarily unavailable (5xx responses)."""

    pass


class PersistenceError(TransientError):
    """Database write failed in a way that may succeed on retry."""

    pass


class PermanentError(EngineError):
    """Errors that will not succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Invalid input or data format."""

    pass


class ServiceAreaError(PermanentError):
    """Pickup or dropoff lies outside every active service center."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint


class NotFoundError(PermanentError):
    """Requested entity does not exist."""

    pass


class ConflictError(PermanentError):
    """Lost a race for a resource; refresh and pick another, do not retry."""

    pass


class ExpiredError(PermanentError):
    """Order is past its assignment deadline."""

    pass


class InvalidTransitionError(PermanentError):
    """Requested status change is not allowed from the current status."""

    def __init__(
        self,
        current: str,
        requested: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(f"Cannot transition from {current} to {requested}", details)
        self.current = current
        self.requested = requested


class ForbiddenError(PermanentError):
    """Actor lacks the role or ownership required for the operation."""

    pass


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    pass


class UpstreamError(EngineError):
    """Distance provider failed to produce a route."""

    pass


class UpstreamUnavailableError(UpstreamError, ServiceUnavailableError):
    """Routing service unreachable or erroring. Retryable with backoff."""

    pass


class UpstreamTimeoutError(UpstreamUnavailableError, NetworkError):
    """Routing request exceeded its timeout."""

    pass


class RouteNotFoundError(UpstreamError, PermanentError):
    """Routing service has no route between the two points."""

    pass
