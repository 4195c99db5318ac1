"""Log formatters for JSON and human-readable output."""

import json
import logging
from datetime import UTC, datetime

SERVICE_NAME = "parcel-engine"

# Record attributes promoted to top-level JSON keys when present
CONTEXT_FIELDS = (
    "order_id",
    "driver_id",
    "user_id",
    "coupon_code",
    "correlation_id",
    "event",
)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shipping in deployed environments."""

    def __init__(self, environment: str = "development"):
        super().__init__()
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": SERVICE_NAME,
            "env": self.environment,
        }
        log_data.update(
            {field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)}
        )

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevFormatter(logging.Formatter):
    """Single-line console format; appends the order and driver when known."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s [%(levelname)8s] [corr=%(correlation_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        tags = [
            f"{field}={getattr(record, field)}"
            for field in ("order_id", "driver_id")
            if getattr(record, field, None)
        ]
        return f"{line} ({', '.join(tags)})" if tags else line
