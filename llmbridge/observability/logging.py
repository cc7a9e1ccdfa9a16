"""
llmbridge - Structured JSON Logging

Structured logging with automatic call-context injection.

Features:
- JSON-formatted logs, one object per line
- Call context (call_id, provider, model, operation) injected from a ContextVar
- Level and format configurable via LOG_LEVEL / LOG_FORMAT
- Sensitive field redaction (API keys, authorization headers)

Only the "llmbridge" logger hierarchy is configured; the root logger of
the host application is left alone.

Usage:
    from llmbridge.observability.logging import get_logger, call_context

    logger = get_logger(__name__)
    with call_context(provider="openai", model="gpt-4o", operation="stream"):
        logger.info("Stream opened", status_code=200)

Output:
    {"timestamp": "2025-01-15T10:30:00+00:00", "level": "INFO",
     "logger": "llmbridge.adapters.base", "message": "Stream opened",
     "call_id": "call_1a2b3c", "provider": "openai", "model": "gpt-4o",
     "operation": "stream", "status_code": 200}
"""

import json
import logging
import os
import sys
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Union
from contextvars import ContextVar

ROOT_LOGGER_NAME = "llmbridge"

_call_context: ContextVar[Optional["LogContext"]] = ContextVar("llmbridge_log_context", default=None)


@dataclass
class LogContext:
    """
    Per-call logging context.

    Stored in a ContextVar, so concurrent calls on one event loop
    each see their own values.
    """
    call_id: str = ""
    provider: str = ""
    model: str = ""
    operation: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def get_current(cls) -> Optional["LogContext"]:
        return _call_context.get()

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.call_id:
            result["call_id"] = self.call_id
        if self.provider:
            result["provider"] = self.provider
        if self.model:
            result["model"] = self.model
        if self.operation:
            result["operation"] = self.operation
        result.update(self.extra)
        return result


@contextmanager
def call_context(**fields: Any) -> Iterator[LogContext]:
    """
    Bind context fields for the duration of a block.

    Nested blocks inherit and override the enclosing context; the previous
    context is restored on exit.
    """
    parent = LogContext.get_current()
    ctx = replace(parent, extra=dict(parent.extra)) if parent else LogContext()
    if not ctx.call_id:
        ctx.call_id = f"call_{uuid.uuid4().hex[:12]}"
    for key, value in fields.items():
        if key in ("call_id", "provider", "model", "operation"):
            setattr(ctx, key, value)
        else:
            ctx.extra[key] = value
    token = _call_context.set(ctx)
    try:
        yield ctx
    finally:
        _call_context.reset(token)


class JSONFormatter(logging.Formatter):
    """JSON log formatter with call-context injection and redaction."""

    SENSITIVE_FIELDS = {
        "secret", "token_value", "api_key", "apikey",
        "authorization", "x-api-key", "x-goog-api-key", "credential",
    }

    _RESERVED = {
        "name", "msg", "args", "created", "filename",
        "funcName", "levelname", "levelno", "lineno",
        "module", "msecs", "pathname", "process",
        "processName", "relativeCreated", "stack_info",
        "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName",
    }

    def __init__(self, include_location: bool = False, redact_sensitive: bool = True):
        super().__init__()
        self.include_location = include_location
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_location:
            log_data["location"] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        ctx = LogContext.get_current()
        if ctx:
            log_data.update(ctx.to_dict())

        for key, value in record.__dict__.items():
            if key in self._RESERVED:
                continue
            if self.redact_sensitive and self._is_sensitive(key):
                value = "[REDACTED]"
            log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)

    def _is_sensitive(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        return any(sensitive in field_lower for sensitive in self.SENSITIVE_FIELDS)


class StructuredLogger:
    """
    Logger wrapper: keyword arguments become structured fields.

        logger.info("Retrying", attempt=2, delay_s=4.0)
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, *args, **kwargs):
        if not self._logger.isEnabledFor(level):
            return
        extra = dict(kwargs.pop("extra", {}) or {})
        for key in list(kwargs):
            if key not in ("exc_info", "stack_info", "stacklevel"):
                extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


_logging_configured = False


def setup_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = True,
    include_location: bool = False,
    redact_sensitive: bool = True,
) -> None:
    """
    Configure the llmbridge logger hierarchy.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSONFormatter (True) or a plain text formatter
        include_location: Include filename:lineno in JSON logs
        redact_sensitive: Redact API keys and authorization values
    """
    global _logging_configured

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(JSONFormatter(
            include_location=include_location,
            redact_sensitive=redact_sensitive,
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
    logger.addHandler(handler)
    logger.propagate = False

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger, configuring from the environment on first use."""
    if not _logging_configured:
        setup_logging(
            level=os.getenv("LOG_LEVEL", "WARNING"),
            json_output=os.getenv("LOG_FORMAT", "json").lower() == "json",
        )
    return StructuredLogger(logging.getLogger(name))


class TimedOperation:
    """
    Context manager for timing operations.

    Usage:
        async with TimedOperation("generate", logger) as timer:
            response = await adapter.generate(call)
        # Logs "generate completed" with duration_ms
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        log_level: int = logging.DEBUG,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.logger = logger or get_logger(f"{ROOT_LOGGER_NAME}.timing")
        self.log_level = log_level
        self.extra = extra or {}
        self.start_time: float = 0.0
        self.duration_ms: Optional[float] = None

    @property
    def elapsed_seconds(self) -> float:
        return time.perf_counter() - self.start_time

    def __enter__(self) -> "TimedOperation":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = self.elapsed_seconds * 1000
        log_extra = {"duration_ms": round(self.duration_ms, 2), **self.extra}
        if exc_type:
            log_extra["error"] = str(exc_val)
            self.logger._log(logging.ERROR, f"{self.operation} failed", extra=log_extra)
        else:
            self.logger._log(self.log_level, f"{self.operation} completed", extra=log_extra)

    async def __aenter__(self) -> "TimedOperation":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
