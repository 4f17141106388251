import json
import logging
import logging.config
from datetime import datetime, timezone

# Attributes passed through ``extra=`` that end up as top-level JSON keys.
CONTEXT_FIELDS = (
    "request_id",
    "run_id",
    "task_id",
    "attempt",
    "subscription_id",
    "payment_id",
    "idempotency_key",
    "path",
    "method",
    "status",
    "duration_ms",
)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": JsonLogFormatter}},
            "handlers": {
                "default": {"class": "logging.StreamHandler", "formatter": "json"}
            },
            "root": {"handlers": ["default"], "level": level.upper()},
            # The observability middleware already logs every request.
            "loggers": {"uvicorn.access": {"level": "WARNING"}},
        }
    )
