"""Logging setup and configuration."""

import logging
import sys

from ..core.correlation import CorrelationFilter
from .context import ContextFilter
from .filters import DefaultCorrelationFilter, PIIFilter
from .formatters import DevFormatter, JSONFormatter

# Client libraries that log every request at INFO/DEBUG
QUIET_LOGGERS = ("urllib3", "httpx", "sqlalchemy.engine")


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    environment: str = "development",
) -> None:
    """Replace root handlers with one stdout handler.

    Filters run in order: PII masking, then order context, then the
    ambient correlation ID, with "-" filled in for records that have none.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(environment) if json_output else DevFormatter())
    for log_filter in (
        PIIFilter(),
        ContextFilter(),
        CorrelationFilter(),
        DefaultCorrelationFilter(),
    ):
        handler.addFilter(log_filter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.getLevelName(level.upper()))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
