from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from crm_api.context import current_scope, get_correlation_id


_RESERVED = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}
_SCOPE_FIELDS = ("correlation_id", "user_id", "tenant_id")
_EXTRA_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "entity_type",
        "entity_id",
        "jti",
        "reason",
        "attempt",
        "error",
    }
)
_MAX_ERROR_LENGTH = 500


class RequestScopeFilter(logging.Filter):
    """Fills user and tenant from the request scope unless the call passed them."""

    def filter(self, record: logging.LogRecord) -> bool:
        scope = current_scope()
        for name in _SCOPE_FIELDS:
            if getattr(record, name, None) is None:
                setattr(record, name, getattr(scope, name))
        return True


def _install_correlation_factory() -> None:
    base_factory = logging.getLogRecordFactory()

    # Set at creation time so records captured by other handlers carry it too.
    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = base_factory(*args, **kwargs)
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = get_correlation_id()
        return record

    logging.setLogRecordFactory(factory)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _SCOPE_FIELDS:
            payload[name] = getattr(record, name, None)

        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key in _EXTRA_FIELDS and key not in _RESERVED
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        if fields:
            payload["fields"] = fields
        return json.dumps(payload, default=str)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_crm_configured", False):
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(RequestScopeFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    _install_correlation_factory()
    root_logger._crm_configured = True  # type: ignore[attr-defined]
