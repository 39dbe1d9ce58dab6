import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Optional

from marketplace.core.context import get_lender_reference, get_request_id
from marketplace.core.settings import settings

RECONCILIATION_LOGGER = "marketplace.reconciliation"


class RequestContextFilter(logging.Filter):
    """Stamp each record with the active request id and lender reference."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.lender_reference = get_lender_reference()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the stream it was written to."""

    def __init__(self, stream_label: str = "app") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": self.stream_label,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "lender_reference": getattr(record, "lender_reference", "-"),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _stdout_handler(formatter: str, level: str) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "stream": "ext://sys.stdout",
        "formatter": formatter,
        "filters": ["request_context"],
        "level": level,
    }


def build_logging_config(level: str) -> dict[str, Any]:
    def route(handler: str) -> dict[str, Any]:
        return {"handlers": [handler], "level": level, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_context": {"()": RequestContextFilter}},
        "formatters": {
            "app_json": {"()": JsonFormatter, "stream_label": "app"},
            "reconciliation_json": {"()": JsonFormatter, "stream_label": "reconciliation"},
        },
        "handlers": {
            "app": _stdout_handler("app_json", level),
            "reconciliation": _stdout_handler("reconciliation_json", level),
        },
        "loggers": {
            "": route("app"),
            RECONCILIATION_LOGGER: route("reconciliation"),
            **{name: route("app") for name in ("uvicorn", "uvicorn.error", "uvicorn.access")},
        },
    }


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    logging.config.dictConfig(build_logging_config(log_level))
    logging.getLogger(__name__).info(
        "Logging ready (environment=%s, level=%s)", settings.environment, log_level
    )


def get_reconciliation_logger() -> logging.Logger:
    """Stream for lender lifecycle anomalies: orphans, stale or unknown events."""
    return logging.getLogger(RECONCILIATION_LOGGER)
