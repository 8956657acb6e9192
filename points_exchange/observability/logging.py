"""
Client-side logging: correlation IDs for backend calls and redaction of
credentials before anything reaches a handler.

An exchange submission runs inside ``correlation_id_context()``; ApiClient
forwards the active ID as ``X-Request-ID`` so client and server logs line up.

Usage:
    from points_exchange.observability import setup_logging

    setup_logging("DEBUG")                  # text to stderr
    setup_logging(fmt="json")               # one JSON object per line
"""

import logging
import os
import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "points-exchange-client"
REDACTED = "[REDACTED]"

_correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return _correlation_id_ctx.get()


def generate_correlation_id() -> str:
    return f"px-{uuid.uuid4().hex[:16]}"


@contextmanager
def correlation_id_context(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation ID (a fresh one unless given) for the enclosed block."""
    token = _correlation_id_ctx.set(correlation_id or generate_correlation_id())
    try:
        yield _correlation_id_ctx.get()
    finally:
        _correlation_id_ctx.reset(token)


class CorrelationIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "none"
        return True


class SensitiveDataFilter(logging.Filter):
    """Redacts tokens, passwords and verification codes.

    Covers ``extra=`` fields, dict-style ``%`` args, and two patterns inside
    already-formatted messages: bearer headers and ``Code: 123456`` echoes.
    """

    SENSITIVE_KEYS = {
        "password", "token", "refresh_token", "refreshtoken", "credential",
        "authorization", "verification_code", "verificationcode",
    }
    MESSAGE_PATTERNS = (
        (re.compile(r"(Bearer\s+)[^\s,;\"']+", re.IGNORECASE), rf"\g<1>{REDACTED}"),
        (re.compile(r"(\bcode[:=]\s*)\d{4,8}\b", re.IGNORECASE), rf"\g<1>{REDACTED}"),
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = self._redact(record.args)

        for key in list(record.__dict__):
            if key.lower() in self.SENSITIVE_KEYS:
                setattr(record, key, REDACTED)

        message = record.getMessage()
        for pattern, replacement in self.MESSAGE_PATTERNS:
            message = pattern.sub(replacement, message)
        record.msg = message
        record.args = None

        return True

    def _redact(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: REDACTED if str(k).lower() in self.SENSITIVE_KEYS else self._redact(v)
                for k, v in data.items()
            }
        if isinstance(data, (list, tuple)):
            return [self._redact(item) for item in data]
        return data


class ClientJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["correlation_id"] = getattr(record, "correlation_id", "none")
        log_record["service"] = SERVICE_NAME
        log_record["environment"] = os.getenv("ENVIRONMENT", "development")


def build_handler(fmt: str = "text", stream=None) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    if fmt == "json":
        handler.setFormatter(ClientJsonFormatter(
            "%(timestamp)s %(level)s %(logger)s %(correlation_id)s %(message)s",
            rename_fields={"timestamp": "@timestamp"},
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    handler.addFilter(CorrelationIDFilter())
    handler.addFilter(SensitiveDataFilter())
    return handler


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> logging.Handler:
    """
    Install a single redacting handler on the root logger.

    Falls back to LOG_LEVEL (default WARNING, so the CLI stays quiet) and
    LOG_FORMAT (json in production, text otherwise).
    """
    log_level = (level or os.getenv("LOG_LEVEL", "WARNING")).upper()
    log_format = fmt or os.getenv("LOG_FORMAT", "json" if os.getenv("ENVIRONMENT") == "production" else "text")

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    handler = build_handler(log_format)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # httpx logs every request at INFO, including the URL
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
