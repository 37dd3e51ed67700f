"""Logging configuration helpers."""

import json
import logging
import os
from typing import Any

# LogRecord attributes that are not user-supplied extra fields.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging in production.

    Fields passed with `extra={...}` become top-level keys of the document.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""

        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, ensure_ascii=False, default=str)


def configure_logging(log_level: str, json_format: bool | None = None) -> None:
    """Configure root logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, JSON. If None, auto-detect from LOG_FORMAT.
    """

    if json_format is None:
        json_format = os.getenv("LOG_FORMAT", "").lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(log_level)

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s - %(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # aiokafka logs every reconnect attempt at INFO
    logging.getLogger("aiokafka").setLevel(max(root_logger.level, logging.WARNING))
