"""Logging helpers for structured application logs."""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any

from .utils.datetime_utils import now_utc

SERVICE_NAME = "trogdor-api"

_RESERVED_LOG_RECORD_KEYS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object, merging ``extra=`` keys."""

    def __init__(self, service: str, environment: str) -> None:
        super().__init__()
        self._service = service
        self._environment = environment

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": now_utc().isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "service": self._service,
            "environment": self._environment,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_RECORD_KEYS:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _normalize_log_level(level: str | None, environment: str) -> int:
    if level:
        normalized = level.strip().upper()
    else:
        normalized = "INFO" if environment.lower() == "production" else "DEBUG"
    return logging.getLevelNamesMapping().get(normalized, logging.INFO)


def configure_logging(
    service: str = SERVICE_NAME,
    environment: str = "development",
    log_level: str | None = None,
) -> None:
    resolved_level = _normalize_log_level(log_level or os.getenv("LOG_LEVEL"), environment)
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JSONFormatter(service=service, environment=environment))
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(resolved_level)
    # httpx logs every request URL at INFO, including query strings.
    logging.getLogger("httpx").setLevel(max(resolved_level, logging.WARNING))
