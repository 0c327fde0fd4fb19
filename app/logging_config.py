"""JSON logging configuration for the inbox service."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and record.context:
            log_data["context"] = record.context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route all logging to stdout as JSON."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"inbox.{name}")


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that merges bound ids into every record's context.

    Per-call fields go in ``context=``; they win over bound ids on collision.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        extra = kwargs.pop("extra", None) or {}
        merged = {**self.extra, **(extra.get("context") or {}), **(context or {})}
        if merged:
            kwargs["extra"] = {**extra, "context": merged}
        return msg, kwargs


def bind_logger(logger: logging.Logger, **ids: Any) -> ContextLogger:
    """ContextLogger with the given ids (UUIDs and the like rendered as strings); None values are dropped."""
    return ContextLogger(logger, {key: str(value) for key, value in ids.items() if value is not None})
