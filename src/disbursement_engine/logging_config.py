"""Logging configuration.

Two output formats:
- console: human-readable lines for development
- json: one JSON object per line for log aggregation
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def get_logging_config(level: str = "INFO", fmt: str = "console") -> dict[str, Any]:
    """Build a dictConfig for the given level and format."""
    if fmt == "json":
        formatters: dict[str, Any] = {
            "default": {"()": "disbursement_engine.logging_config.JsonFormatter"},
        }
    else:
        formatters = {
            "default": {
                "format": "[{asctime}] {levelname} {name} {message}",
                "style": "{",
            },
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "disbursement_engine": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
            "httpx": {
                "handlers": ["console"],
                "level": "WARNING",
                "propagate": False,
            },
        },
        "root": {"handlers": ["console"], "level": "WARNING"},
    }


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Install the logging configuration for this process."""
    logging.config.dictConfig(get_logging_config(level, fmt))
