"""Logging setup shared by the API process and Celery workers."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from app.config import get_settings

LOGGER_PREFIX = "linestep"

# Keys passed via `extra=` that the JSON formatter copies onto the record
STRUCTURED_FIELDS = (
    "enrollment_id",
    "attempt_id",
    "friend_id",
    "scenario_id",
    "account_id",
    "event_type",
    "reason",
    "source",
    "outcome",
)


class JsonFormatter(logging.Formatter):
    """Structured one-line JSON records (production)."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = str(getattr(record, key))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class LoggingConfig:
    """Configure the root logger once from settings."""

    _configured = False

    def __init__(self) -> None:
        if LoggingConfig._configured:
            return
        settings = get_settings()
        level = getattr(logging, settings.log_level.upper(), logging.INFO)
        handler = logging.StreamHandler()
        if settings.is_production:
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(
                logging.Formatter(
                    "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
        root = logging.getLogger()
        root.handlers = [handler]
        root.setLevel(level)
        # SQL echo is noisy at INFO
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        LoggingConfig._configured = True


def get_logger(name: str) -> logging.Logger:
    """Namespaced logger, e.g. get_logger("delivery") -> linestep.delivery."""
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")
