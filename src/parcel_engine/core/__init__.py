"""Core utilities for the parcel engine."""

from .correlation import CorrelationFilter, get_current_correlation_id, with_correlation
from .exceptions import (
    ConfigurationError,
    ConflictError,
    EngineError,
    ExpiredError,
    ForbiddenError,
    InvalidTransitionError,
    NetworkError,
    NotFoundError,
    PermanentError,
    PersistenceError,
    RouteNotFoundError,
    ServiceAreaError,
    ServiceUnavailableError,
    TransientError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    ValidationError,
)
from .retry import RetryConfig, with_retry, with_retry_sync

__all__ = [
    "EngineError",
    "TransientError",
    "NetworkError",
    "ServiceUnavailableError",
    "PersistenceError",
    "PermanentError",
    "ValidationError",
    "ServiceAreaError",
    "NotFoundError",
    "ConflictError",
    "ExpiredError",
    "InvalidTransitionError",
    "ForbiddenError",
    "ConfigurationError",
    "UpstreamError",
    "UpstreamUnavailableError",
    "UpstreamTimeoutError",
    "RouteNotFoundError",
    "RetryConfig",
    "with_retry",
    "with_retry_sync",
    "CorrelationFilter",
    "with_correlation",
    "get_current_correlation_id",
]
