# adminpanel/logging_setup.py
import json
import logging
import os
from datetime import datetime, timezone

from rich.logging import RichHandler

_RESERVED = {
    "args", "asctime", "created", "exc_info", "exc_text", "filename",
    "funcName", "levelname", "levelno", "lineno", "module", "msecs",
    "message", "msg", "name", "pathname", "process", "processName",
    "relativeCreated", "stack_info", "thread", "threadName", "taskName",
}


def _jsonable(value):
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return str(value)


def _extras(record: logging.LogRecord) -> dict:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `extra=` fields are merged into the payload."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in _extras(record).items():
            payload.setdefault(key, _jsonable(value))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class ExtrasFormatter(logging.Formatter):
    """Message followed by `key=value` pairs; RichHandler adds time and level."""

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        extras = " ".join(f"{k}={v}" for k, v in _extras(record).items() if v is not None)
        return f"{msg} | {extras}" if extras else msg


def configure_logging(level: str = "INFO", json_format=None) -> None:
    """Install a single root handler. LOG_FORMAT=json selects JSON lines."""
    if json_format is None:
        json_format = os.getenv("LOG_FORMAT", "console").lower() == "json"

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    if json_format:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
    else:
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(ExtrasFormatter())
    root.addHandler(handler)
