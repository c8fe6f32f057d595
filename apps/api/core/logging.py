"""
Structured logging configuration.

JSON lines in production, plain text in development. Call sites attach
structured context with ``extra={"extra_fields": {...}}``.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict
from core.config import settings

# Loggers whose records are always kept at INFO, whatever LOG_LEVEL says.
AUDIT_LOGGER_NAME = "carecircle.audit"
NOTIFY_LOGGER_NAME = "carecircle.notify"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging():
    """
    Configure application-wide logging.

    Uses JSON format in production, text format in development.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)
    logging.getLogger("kombu").setLevel(logging.WARNING)

    for name in (AUDIT_LOGGER_NAME, NOTIFY_LOGGER_NAME):
        logging.getLogger(name).setLevel(logging.INFO)

    return root_logger


# Initialize logging on import
setup_logging()
