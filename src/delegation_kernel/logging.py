"""
Structured logging for the delegation kernel.

This module provides:
- A LogContext carried by every record (request, run, step, user)
- StructuredLogger, a thin wrapper over the standard logging module that
  emits one JSON object (or a key=value line) per record
- JSON and text formatters
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

# =============================================================================
# Log Context
# =============================================================================


@dataclass(frozen=True)
class LogContext:
    """Context information attached to log records."""

    trace_id: str | None = None
    request_id: str | None = None
    run_id: str | None = None
    step_id: str | None = None
    user_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        d.update(self.extra)
        return d

    def with_update(self, **kwargs) -> LogContext:
        """Create a new context with updated values."""
        extra = dict(self.extra)
        known = {"trace_id", "request_id", "run_id", "step_id", "user_id"}
        for key, value in kwargs.items():
            if key not in known:
                extra[key] = value
        return LogContext(
            trace_id=kwargs.get("trace_id", self.trace_id),
            request_id=kwargs.get("request_id", self.request_id),
            run_id=kwargs.get("run_id", self.run_id),
            step_id=kwargs.get("step_id", self.step_id),
            user_id=kwargs.get("user_id", self.user_id),
            extra=extra,
        )


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger:
    """
    Logger with structured output and bound context.

    Binding returns a child logger that shares the underlying stdlib logger,
    so concurrent executions never see each other's context.

    Example:
        ```python
        logger = get_logger("delegation_kernel.orchestrator")
        run_log = logger.bind(request_id=request_id, run_id=run_id)
        run_log.info("Run started", mode="ALL")
        ```
    """

    def __init__(
        self,
        name: str = "delegation_kernel",
        *,
        json_output: bool = True,
        context: LogContext | None = None,
        _logger: logging.Logger | None = None,
    ):
        self.name = name
        self.json_output = json_output
        self._context = context or LogContext()
        self._logger = _logger or logging.getLogger(name)

    @property
    def context(self) -> LogContext:
        return self._context

    def bind(self, **kwargs) -> StructuredLogger:
        """Return a child logger with additional context fields."""
        return StructuredLogger(
            self.name,
            json_output=self.json_output,
            context=self._context.with_update(**kwargs),
            _logger=self._logger,
        )

    def _log(
        self,
        level: int,
        message: str,
        event_type: str | None = None,
        data: dict[str, Any] | None = None,
        exc_info: bool = False,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        record_data = {
            "message": message,
            **self._context.to_dict(),
        }

        if event_type:
            record_data["event_type"] = event_type

        if data:
            record_data.update(data)

        if self.json_output:
            self._logger.log(level, json.dumps(record_data, default=str), exc_info=exc_info)
        else:
            extras = " ".join(f"{k}={v}" for k, v in record_data.items() if k != "message")
            self._logger.log(level, f"{message} {extras}".rstrip(), exc_info=exc_info)

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, data=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, data=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, data=kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs)

    def event(self, event_type: str, message: str, *, level: int = logging.INFO, **kwargs) -> None:
        self._log(level, message, event_type=event_type, data=kwargs)

    def log_error(
        self,
        error: Exception,
        message: str | None = None,
        **kwargs,
    ) -> None:
        """Log an error with context."""
        error_data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            **kwargs,
        }

        # Kernel errors carry a code and a retryable flag
        code = getattr(error, "code", None)
        if code is not None:
            error_data["error_code"] = str(getattr(code, "value", code))
        if hasattr(error, "retryable"):
            error_data["retryable"] = error.retryable

        self._log(
            logging.ERROR,
            message or f"Error: {error}",
            event_type="error",
            data=error_data,
            exc_info=True,
        )


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }

        try:
            message_data = json.loads(record.getMessage())
            if isinstance(message_data, dict):
                log_data.update(message_data)
            else:
                log_data["message"] = record.getMessage()
        except (json.JSONDecodeError, TypeError):
            log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        line = f"{timestamp} {record.levelname:8} {record.name} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# =============================================================================
# Utilities
# =============================================================================


def generate_trace_id() -> str:
    return f"trace_{uuid.uuid4().hex[:16]}"


def truncate_for_log(text: str, max_length: int = 200) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"... ({len(text)} chars total)"


def get_logger(name: str = "delegation_kernel", *, json_output: bool = True) -> StructuredLogger:
    return StructuredLogger(name, json_output=json_output)


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Attach a single stdout handler to the package root logger."""
    root = logging.getLogger("delegation_kernel")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
    root.addHandler(handler)


__all__ = [
    "LogContext",
    "StructuredLogger",
    "JSONFormatter",
    "TextFormatter",
    "generate_trace_id",
    "truncate_for_log",
    "get_logger",
    "configure_logging",
]
