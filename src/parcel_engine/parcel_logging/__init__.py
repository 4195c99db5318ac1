"""Logging module with structured formatters, PII filtering, and context management."""

from .context import ContextFilter, LogContext, log_context, log_order_context
from .filters import DefaultCorrelationFilter, PIIFilter
from .formatters import DevFormatter, JSONFormatter
from .setup import setup_logging

__all__ = [
    "setup_logging",
    "log_context",
    "log_order_context",
    "JSONFormatter",
    "DevFormatter",
    "PIIFilter",
    "DefaultCorrelationFilter",
    "LogContext",
    "ContextFilter",
]
