"""
Structured logging configuration for perfwatch.

Provides JSON-formatted logging with automatic context propagation,
correlation ID injection, and configurable output handlers.

Usage:
    from perfwatch.logging_config import configure_logging, get_logger

    # Configure at application entry point
    configure_logging(level="INFO", json_output=True)

    # Get a structured logger
    logger = get_logger(__name__)
    logger.info("Snapshot fetched", endpoint="/api/performance/metrics", duration_ms=12.5)

    # Automatic context propagation
    with LogContext(correlation_id="3f2a...", endpoint="/api/fractals/julia"):
        logger.info("Request started")  # Includes correlation_id and endpoint
"""

import asyncio
import inspect
import json
import logging
import logging.handlers
import os
import sys
import threading
import time
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

# Context variables for automatic field injection
_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# Environment configuration
LOG_LEVEL = os.environ.get("PERFWATCH_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.environ.get("PERFWATCH_LOG_FORMAT", "text")  # "json" or "text"
LOG_FILE = os.environ.get("PERFWATCH_LOG_FILE", "")

# Log rotation configuration (for file logging)
LOG_MAX_BYTES = int(os.environ.get("PERFWATCH_LOG_MAX_BYTES", 10 * 1024 * 1024))
LOG_BACKUP_COUNT = int(os.environ.get("PERFWATCH_LOG_BACKUP_COUNT", 5))


@dataclass
class LogRecord:
    """Structured log record with all context fields."""

    timestamp: str
    level: str
    logger: str
    message: str
    fields: Dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None
    endpoint: Optional[str] = None
    exception: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: Dict[str, Any] = {
            "ts": self.timestamp,
            "level": self.level,
            "logger": self.logger,
            "msg": self.message,
        }
        if self.correlation_id:
            result["correlation_id"] = self.correlation_id
        if self.endpoint:
            result["endpoint"] = self.endpoint
        if self.fields:
            result.update(self.fields)
        if self.exception:
            result["exception"] = self.exception
        return result

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        """Format as human-readable text."""
        parts = [
            self.timestamp,
            f"[{self.level}]",
            f"[{self.logger}]",
        ]
        if self.correlation_id:
            parts.append(f"[{self.correlation_id[:8]}]")
        if self.endpoint:
            parts.append(f"[{self.endpoint}]")
        parts.append(self.message)
        if self.fields:
            parts.append(" ".join(f"{k}={v}" for k, v in self.fields.items()))
        if self.exception:
            parts.append(f"\n{self.exception.get('traceback', '')}")
        return " ".join(parts)


def _build_record(record: logging.LogRecord, timestamp: str, logger_name: str) -> LogRecord:
    ctx = _log_context.get()
    extra_ctx = {k: v for k, v in ctx.items() if k not in ("correlation_id", "endpoint")}
    fields = {**extra_ctx, **getattr(record, "structured_fields", {})}
    return LogRecord(
        timestamp=timestamp,
        level=record.levelname,
        logger=logger_name,
        message=record.getMessage(),
        fields=fields,
        correlation_id=ctx.get("correlation_id") or getattr(record, "correlation_id", None),
        endpoint=ctx.get("endpoint") or getattr(record, "endpoint", None),
    )


class JSONFormatter(logging.Formatter):
    """JSON log formatter with structured field support."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_record = _build_record(
            record,
            datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            record.name,
        )

        if record.exc_info:
            log_record.exception = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]) if record.exc_info[1] else "",
                "traceback": self.formatException(record.exc_info),
            }

        return log_record.to_json()


class TextFormatter(logging.Formatter):
    """Human-readable text formatter with structured field support."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as text."""
        log_record = _build_record(
            record,
            datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            record.name.split(".")[-1],
        )

        if record.exc_info:
            log_record.exception = {
                "traceback": self.formatException(record.exc_info),
            }

        return log_record.to_text()


class StructuredLogger:
    """
    Structured logger wrapper with automatic context propagation.

    Provides methods for logging with structured fields that are
    automatically serialized to JSON or text format.
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)
        self._name = name

    def _log(
        self,
        level: int,
        message: str,
        exc_info: bool = False,
        **fields: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, message, exc_info=exc_info, extra={"structured_fields": fields})

    def debug(self, message: str, **fields: Any) -> None:
        """Log at DEBUG level with optional structured fields."""
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        """Log at INFO level with optional structured fields."""
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        """Log at WARNING level with optional structured fields."""
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        """Log at ERROR level with optional structured fields and exception."""
        self._log(logging.ERROR, message, exc_info=exc_info, **fields)

    def exception(self, message: str, **fields: Any) -> None:
        """Log at ERROR level with exception info."""
        self._log(logging.ERROR, message, exc_info=True, **fields)


class LogContext:
    """
    Context manager for setting log context fields.

    All logs within the context will automatically include the specified fields.
    Works across ``await`` boundaries since it is backed by a ContextVar.
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        current = _log_context.get()
        self._token = _log_context.set({**current, **self._fields})
        return self

    def __exit__(self, *args) -> None:
        if self._token is not None:
            _log_context.reset(self._token)


def set_context(**fields: Any) -> None:
    """Set log context fields for the current async context."""
    current = _log_context.get()
    _log_context.set({**current, **fields})


def get_context() -> Dict[str, Any]:
    """Get current log context fields."""
    return _log_context.get()


def clear_context() -> None:
    """Clear all log context fields."""
    _log_context.set({})


# Logger cache (thread-safe)
_loggers: Dict[str, StructuredLogger] = {}
_loggers_lock = threading.Lock()


def get_logger(name: str) -> StructuredLogger:
    """
    Get or create a structured logger by name (thread-safe).

    Args:
        name: Logger name (typically __name__)

    Returns:
        StructuredLogger instance
    """
    with _loggers_lock:
        if name not in _loggers:
            _loggers[name] = StructuredLogger(name)
        return _loggers[name]


def configure_logging(
    level: str | None = None,
    json_output: bool | None = None,
    log_file: str | None = None,
    propagate: bool = True,
) -> None:
    """
    Configure logging for the application.

    Should be called once at application startup. Library code never calls it.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format; if False, text format
        log_file: Optional file path for log output
        propagate: Whether perfwatch loggers propagate to the root logger
    """
    log_level = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    use_json = json_output if json_output is not None else (LOG_FORMAT == "json")
    file_path = log_file or LOG_FILE

    formatter = JSONFormatter() if use_json else TextFormatter()

    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    root.addHandler(console_handler)

    if file_path:
        file_handler = logging.handlers.RotatingFileHandler(
            file_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        root.addHandler(file_handler)

    package_logger = logging.getLogger("perfwatch")
    package_logger.setLevel(log_level)
    package_logger.propagate = propagate


def log_function(
    level: str = "DEBUG",
    log_duration: bool = True,
):
    """
    Decorator to log coroutine or function completion and duration.

    Failures are logged at ERROR with the exception and re-raised.

    Args:
        level: Log level for the completion record
        log_duration: Whether to log execution duration
    """
    log_level = getattr(logging, level.upper(), logging.DEBUG)

    def decorator(func: Callable) -> Callable:
        logger = get_logger(func.__module__)

        @wraps(func)
        def wrapper(*args, **kwargs):
            fields: Dict[str, Any] = {"function": func.__name__}
            start = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                fields["duration_ms"] = round((time.monotonic() - start) * 1000, 2)
                fields["error"] = str(e)
                logger.error(f"Function failed: {func.__name__}", exc_info=True, **fields)
                raise
            if log_duration:
                fields["duration_ms"] = round((time.monotonic() - start) * 1000, 2)
            logger._log(log_level, f"Function completed: {func.__name__}", **fields)
            return result

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            fields: Dict[str, Any] = {"function": func.__name__}
            start = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                fields["duration_ms"] = round((time.monotonic() - start) * 1000, 2)
                fields["error"] = str(e)
                logger.error(f"Function failed: {func.__name__}", exc_info=True, **fields)
                raise
            if log_duration:
                fields["duration_ms"] = round((time.monotonic() - start) * 1000, 2)
            logger._log(log_level, f"Function completed: {func.__name__}", **fields)
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return wrapper

    return decorator
