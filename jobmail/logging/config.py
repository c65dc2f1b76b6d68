"""Logging configuration for the jobmail service."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, TextIO

from .context import get_log_context

LogFormat = Literal["json", "key-value"]

SERVICE_NAME = "jobmail"

# LogRecord attributes that are never treated as structured extras
RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName", "levelname",
        "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
        "processName", "relativeCreated", "thread", "threadName", "asctime",
        "exc_info", "exc_text", "stack_info", "taskName",
    }
)


def _record_extras(record: logging.LogRecord, skip=frozenset()) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in RESERVED_ATTRS and key not in skip and not key.startswith("_")
    }


class ContextualFilter(logging.Filter):
    """Adds service/environment labels and the active log context to each record.

    Explicit ``extra`` fields passed at the call site take precedence over
    context fields of the same name.
    """

    def __init__(self, service: str = SERVICE_NAME, environment: str = "local"):
        super().__init__()
        self.service = service
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        record.environment = self.environment
        for key, value in get_log_context().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """Single-line JSON output with stable field names."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in _record_extras(record).items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
            elif isinstance(value, (str, int, float, bool, list, dict, type(None))):
                payload[key] = value
            else:
                payload[key] = str(value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)

    @staticmethod
    def _format_timestamp(created: float) -> str:
        dt = datetime.fromtimestamp(created, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class KeyValueFormatter(logging.Formatter):
    """Human-readable output: ``timestamp [LEVEL] logger: message key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = _record_extras(record, skip={"service", "environment"})
        if not extras:
            return base
        pairs = " ".join(f"{key}={self._format_value(value)}" for key, value in sorted(extras.items()))
        return f"{base} {pairs}"

    @staticmethod
    def _format_value(value: Any) -> str:
        if value is None:
            return "null"
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, datetime):
            return value.isoformat()
        text = str(value)
        if any(ch in text for ch in (" ", "=", ",")):
            return f'"{text}"'
        return text


def configure_logging(
    level: str = "INFO",
    format_type: LogFormat = "key-value",
    environment: str = "local",
    stream: Optional[TextIO] = None,
) -> None:
    """Configure the root logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'json' or 'key-value'
        environment: Environment label attached to every record
        stream: Output stream (defaults to stdout)

    Raises:
        ValueError: If level or format_type is invalid
    """
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")
    if format_type not in ("json", "key-value"):
        raise ValueError(f"Invalid log format: {format_type}. Must be 'json' or 'key-value'")

    handler = logging.StreamHandler(stream or sys.stdout)
    if format_type == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            KeyValueFormatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    handler.addFilter(ContextualFilter(service=SERVICE_NAME, environment=environment))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Worker threads poll the database constantly; keep library chatter down
    logging.getLogger("apscheduler").setLevel(max(numeric_level, logging.WARNING))
    logging.getLogger("urllib3").setLevel(max(numeric_level, logging.WARNING))

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "event": "logging.configured",
            "component": "logging",
            "log_level": str(level).upper(),
            "log_format": format_type,
        },
    )
