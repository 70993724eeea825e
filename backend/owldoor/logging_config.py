"""
Structured JSON logging

One JSON object per line on stdout. Request-scoped context (request_id, and the
client_id of API-key callers) is attached to every record automatically, and
structured fields travel in `extra={"action": ..., "extra_data": {...}}`.

    logger.info("Lead created", extra={"action": "pro_created", "extra_data": {"pro_id": pid}})
"""

import logging
import json
import sys
from datetime import datetime, timezone
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar("request_id", default=None)
client_id_var: ContextVar[str] = ContextVar("client_id", default=None)

_CONTEXT_VARS = {
    "request_id": request_id_var,
    "client_id": client_id_var,
}

NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "googlemaps": logging.WARNING,
    "openai": logging.WARNING,
}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, var in _CONTEXT_VARS.items():
            value = var.get()
            if value:
                entry[key] = value

        action = getattr(record, "action", None)
        if action:
            entry["action"] = action
        entry.update(getattr(record, "extra_data", None) or {})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Decimal, UUID and datetime values from psycopg rows
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", stream=None) -> None:
    """Replace root handlers with a single JSON handler at `level`."""
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, action: str, message: str, **fields) -> None:
    """
    Shorthand for a structured record.

    Example:
        log_action(logger, "info", "auto_charge_success", "Deducted credits",
                   match_id="m-1", client_id="c-1")
    """
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        message,
        extra={"action": action, "extra_data": fields},
    )
