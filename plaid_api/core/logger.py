"""
Structured Logging Module

This module provides leveled, structured (JSON) loggers with inheritable
context, built on the standard logging package.

Features:
    - One JSON record per call, one line per record
    - Context inherited by child loggers (copied, never shared)
    - Exceptions in payloads normalized to {"message", "stack"}
    - error/fatal records to stderr, everything else to stdout
    - Same formatter for third-party loggers (uvicorn, httpx, asyncpg)

Log Fields:
    - level: debug | info | warn | error | fatal
    - timestamp: ISO 8601 UTC timestamp
    - <context keys>: merged logger context
    - <payload keys>: per-call payload
    - message: Log message
    - logger: (third-party records only) logger name
    - exception: (optional) exception traceback

Usage:
    from plaid_api.core.logger import create_logger

    logger = create_logger("production")
    request_logger = logger.child({"request_id": "abc"})
    request_logger.info("Habit created", {"habit_id": 42})
    request_logger.error("Insert failed", {"err": exc})
"""

import sys
import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


BACKEND_LOGGER_NAME = "plaid_api.structured"

SEVERITIES: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}

LEVEL_LABELS: Dict[int, str] = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

NON_PRODUCTION_ENVIRONMENTS = frozenset({"development", "test"})


def default_min_severity(env: str) -> int:
    """Debug and up outside production, info and up in production."""
    if env in NON_PRODUCTION_ENVIRONMENTS:
        return logging.DEBUG
    return logging.INFO


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_error(error: BaseException) -> Dict[str, str]:
    """Convert an exception to a {message, stack} pair."""
    stack = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )
    return {"message": str(error), "stack": stack}


def normalize_payload(payload: Any) -> Dict[str, Any]:
    """
    Normalize a log payload into record fields.

    Mapping values of exception type become {message, stack}. A bare
    exception is filed under "error". Any other shape is kept unchanged
    under "payload".
    """
    if payload is None:
        return {}
    if isinstance(payload, Mapping):
        return {
            key: normalize_error(value) if isinstance(value, BaseException) else value
            for key, value in payload.items()
        }
    if isinstance(payload, BaseException):
        return {"error": normalize_error(payload)}
    return {"payload": payload}


class StructuredFormatter(logging.Formatter):
    """
    Formatter for structured JSON logging.

    Outputs log records as JSON objects with consistent field names,
    making logs easy to parse with tools like jq, Elasticsearch, or Loki.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "level": LEVEL_LABELS.get(record.levelno, record.levelname.lower()),
            "timestamp": _utc_timestamp(),
        }

        context = getattr(record, "context", None)
        if context is None:
            log_data["logger"] = record.name
        else:
            log_data.update(context)

        payload = getattr(record, "payload", None)
        if payload:
            log_data.update(payload)

        log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class SplitStreamHandler(logging.Handler):
    """
    Write records to stdout, or to stderr at error severity and above.

    Streams are looked up at emit time so redirected sys.stdout/sys.stderr
    are honoured. Handler.handle() holds the handler lock around emit(),
    which keeps records in call order within each stream.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            stream = sys.stderr if record.levelno >= logging.ERROR else sys.stdout
            stream.write(msg + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


def _get_backend() -> logging.Logger:
    """Dedicated non-propagating stdlib logger used by all Logger objects."""
    backend = logging.getLogger(BACKEND_LOGGER_NAME)
    if not any(isinstance(h, SplitStreamHandler) for h in backend.handlers):
        handler = SplitStreamHandler()
        handler.setFormatter(StructuredFormatter())
        backend.addHandler(handler)
        backend.setLevel(logging.DEBUG)
        backend.propagate = False
    return backend


class Logger:
    """
    Leveled structured logger with an immutable context.

    Attributes:
        env: Environment the logger was created for
        min_severity: Numeric threshold; calls below it are dropped
    """

    def __init__(
        self,
        env: str,
        context: Optional[Mapping[str, Any]] = None,
        min_severity: Optional[int] = None,
        backend: Optional[logging.Logger] = None
    ):
        self.env = env
        self._context = dict(context or {})
        self.min_severity = (
            default_min_severity(env) if min_severity is None else min_severity
        )
        self._backend = backend or _get_backend()

    @property
    def context(self) -> Dict[str, Any]:
        """Copy of the merged context."""
        return dict(self._context)

    def child(self, extra_context: Mapping[str, Any]) -> "Logger":
        """
        Create a logger with merged context.

        Keys from extra_context win on collision. The child copies the
        merged mapping, so later changes to extra_context are not seen.
        """
        merged = {**self._context, **extra_context}
        return Logger(self.env, merged, self.min_severity, self._backend)

    def is_enabled(self, severity: str) -> bool:
        return self._level(severity) >= self.min_severity

    def log(self, severity: str, message: str, payload: Any = None) -> None:
        """Write one record if severity is at or above the threshold."""
        level = self._level(severity)
        if level < self.min_severity:
            return

        self._backend.log(
            level,
            message,
            extra={
                "context": dict(self._context),
                "payload": normalize_payload(payload),
            }
        )

    def debug(self, message: str, payload: Any = None) -> None:
        self.log("debug", message, payload)

    def info(self, message: str, payload: Any = None) -> None:
        self.log("info", message, payload)

    def warn(self, message: str, payload: Any = None) -> None:
        self.log("warn", message, payload)

    def error(self, message: str, payload: Any = None) -> None:
        self.log("error", message, payload)

    def fatal(self, message: str, payload: Any = None) -> None:
        self.log("fatal", message, payload)

    @staticmethod
    def _level(severity: str) -> int:
        try:
            return SEVERITIES[severity]
        except KeyError:
            raise ValueError(f"Unknown log severity: '{severity}'")


def create_logger(env: str, context: Optional[Mapping[str, Any]] = None) -> Logger:
    """Build a root structured logger for an environment."""
    return Logger(env, context)


def setup_logging(environment: str = "development") -> None:
    """
    Configure stdlib logging for third-party libraries.

    Root records get the same JSON format and stream split as Logger
    records. Existing root handlers are replaced.

    Args:
        environment: Application environment, selects the root level
    """
    handler = SplitStreamHandler()
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(default_min_severity(environment))

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    _suppress_noisy_loggers()


def _suppress_noisy_loggers() -> None:
    """Suppress verbose logging from third-party libraries."""
    noisy_loggers = [
        "httpx",
        "httpcore",
        "asyncpg",
        "uvicorn.access",
    ]

    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
