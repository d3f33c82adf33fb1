"""Logging utilities for docchat."""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("DOCCHAT_LOG_LEVEL", "INFO")
_DEFAULT_FORMAT = os.environ.get("DOCCHAT_LOG_FORMAT", "json")

CONTEXT_PREFIX = "ctx_"

# Provider clients log full request lines at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")

_SECRET_RE = re.compile(r"(Bearer\s+|api[_-]?key[=:]\s*|\bsk-)[A-Za-z0-9._\-]{6,}", re.IGNORECASE)


def redact(text: str) -> str:
    """Mask bearer tokens and API keys that leak into messages or tracebacks."""
    return _SECRET_RE.sub(lambda match: f"{match.group(1)}***", text)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``ctx_*`` extras are grouped under ``context``."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - thin wrapper
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }
        context = {
            key[len(CONTEXT_PREFIX) :]: value
            for key, value in record.__dict__.items()
            if key.startswith(CONTEXT_PREFIX)
        }
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = redact(self.formatException(record.exc_info))
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int = _DEFAULT_LEVEL, fmt: str = _DEFAULT_FORMAT) -> None:
    """Install a single stdout handler on the root logger."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "docchat") -> logging.Logger:
    """Return configured logger, configuring root on first call."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "JsonFormatter", "redact", "CONTEXT_PREFIX"]
