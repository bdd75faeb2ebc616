"""
Wayfarer - Structured JSON Logging

One JSON object per line, with the request's correlation fields
(request id, trace id, tier, provider, key slot) injected from a
contextvar. Keyword arguments passed to the logger become JSON fields.

Usage:
    from wayfarer.observability.logging import setup_logging, get_logger

    setup_logging(level="INFO")

    logger = get_logger(__name__)
    logger.info("Provider attempt failed", provider="groq", error_kind="quota")

Output:
    {"timestamp": "2024-01-15T10:30:00+00:00", "level": "INFO",
     "logger": "wayfarer.routing.executor", "message": "Provider attempt failed",
     "request_id": "req_1a2b", "tier": "low", "provider": "groq",
     "error_kind": "quota"}

API key material never reaches the output: fields whose name marks
them as a secret are replaced with ``[REDACTED]``, nested dicts included.
"""

import os
import sys
import json
import logging
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

_request_context: ContextVar[Optional["LogContext"]] = ContextVar("log_context", default=None)

# Attributes every LogRecord carries; anything else on a record is a field
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

REDACTED = "[REDACTED]"


@dataclass
class LogContext:
    """
    Correlation fields of the request being handled.

    Set by the HTTP middleware, enriched by the router as the request
    is classified and served.
    """
    request_id: str = ""
    trace_id: str = ""
    span_id: str = ""
    tier: str = ""
    provider: str = ""
    key_slot: str = ""
    endpoint: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def get_current(cls) -> Optional["LogContext"]:
        return _request_context.get()

    @classmethod
    def set_current(cls, ctx: "LogContext"):
        _request_context.set(ctx)

    @classmethod
    def clear(cls):
        _request_context.set(None)

    def update(self, **kwargs):
        """Set known fields; unknown ones go to ``extra``."""
        for key, value in kwargs.items():
            if key != "extra" and hasattr(self, key):
                setattr(self, key, value)
            else:
                self.extra[key] = value

    def to_dict(self) -> Dict[str, Any]:
        result = {
            key: value
            for key, value in (
                ("request_id", self.request_id),
                ("trace_id", self.trace_id),
                ("span_id", self.span_id),
                ("tier", self.tier),
                ("provider", self.provider),
                ("key_slot", self.key_slot),
                ("endpoint", self.endpoint),
            )
            if value
        }
        result.update(self.extra)
        return result


class JSONFormatter(logging.Formatter):
    """
    Render records as single-line JSON.

    Field precedence: core fields, then the request context, then the
    record's own fields (so an explicit ``provider=`` wins over the
    context's provider).
    """

    # Exact name or "_<name>" suffix, e.g. "groq_api_key"
    SENSITIVE_FIELDS = {
        "password", "secret", "token", "api_key", "apikey", "key_material",
        "authorization", "credential", "private_key",
    }

    def __init__(
        self,
        include_timestamp: bool = True,
        include_location: bool = False,
        redact_sensitive: bool = True,
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_location = include_location
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {}
        if self.include_timestamp:
            log_data["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        log_data["level"] = record.levelname
        log_data["logger"] = record.name
        log_data["message"] = record.getMessage()

        if self.include_location:
            log_data["location"] = f"{record.filename}:{record.lineno}"
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        ctx = LogContext.get_current()
        if ctx:
            log_data.update(ctx.to_dict())

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES:
                log_data[key] = value

        if self.redact_sensitive:
            log_data = self._scrub(log_data)
        return json.dumps(log_data, default=str, ensure_ascii=False)

    def _is_sensitive(self, field_name: str) -> bool:
        name = field_name.lower()
        return any(name == s or name.endswith("_" + s) for s in self.SENSITIVE_FIELDS)

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: REDACTED if self._is_sensitive(str(k)) else self._scrub(v)
                for k, v in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self._scrub(v) for v in value]
        return value


class StructuredLogger:
    """
    Thin wrapper over ``logging.Logger`` taking fields as kwargs.

        logger.warning("Key slot rotated", provider="groq", from_slot="primary")

    A field that would clash with a LogRecord attribute (``name``,
    ``args``, ``message``...) is logged with a trailing underscore.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, *args, **kwargs):
        if not self._logger.isEnabledFor(level):
            return
        passthrough = {k: kwargs.pop(k) for k in ("exc_info", "stack_info") if k in kwargs}
        extra = {
            (f"{key}_" if key in _RECORD_ATTRIBUTES else key): value
            for key, value in kwargs.items()
        }
        self._logger.log(level, msg, *args, extra=extra, stacklevel=3, **passthrough)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        """Log at ERROR with the active exception's traceback."""
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
    Configure the root logger. Safe to call again; handlers are replaced.

    Args:
        level: Log level name or number
        json_output: JSON lines (True) or plain text (False)
        include_location: Add ``filename:lineno`` to JSON lines
        redact_sensitive: Replace secret-looking fields with ``[REDACTED]``
    """
    global _logging_configured

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(JSONFormatter(
            include_location=include_location,
            redact_sensitive=redact_sensitive,
        ))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Upstream HTTP chatter would log request URLs, Gemini's carries the key
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger; configures logging from the env on first use."""
    if not _logging_configured:
        setup_logging(
            level=os.getenv("LOG_LEVEL", "INFO"),
            json_output=os.getenv("LOG_FORMAT", "json").lower() == "json",
        )
    return StructuredLogger(logging.getLogger(name))
