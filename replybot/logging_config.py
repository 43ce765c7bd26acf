"""Logging for the reply pipeline.

Production output is one JSON object per line. Structured fields travel in
``extra={"context": {...}}``; pipeline code binds conversation and message
ids once through :func:`bind_logger` instead of repeating them per call.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

SERVICE_NAME = "replybot"
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    def __init__(self, service: str = SERVICE_NAME):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.module}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output for local runs with DEBUG=true."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        return line


def setup_logging(level: str = "INFO", json_output: bool = True) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.getLevelName(level.upper()))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{SERVICE_NAME}.{name}")


class ContextLogger(logging.LoggerAdapter):
    """Merges bound fields with a per-call ``context=`` keyword."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**self.extra, **(kwargs.pop("context", None) or {})}
        if context:
            kwargs["extra"] = {**kwargs.get("extra", {}), "context": context}
        return msg, kwargs

    def bind(self, **fields: Any) -> "ContextLogger":
        return ContextLogger(self.logger, {**self.extra, **fields})


def bind_logger(logger: logging.Logger, **fields: Any) -> ContextLogger:
    return ContextLogger(logger, fields)


def preview(text: Optional[str], max_length: int = 50) -> str:
    """Shorten user/assistant text for log lines."""
    if not text:
        return ""
    text = text.replace("\n", " ")
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}..."


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return ""
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}***{value[-visible:]}"
