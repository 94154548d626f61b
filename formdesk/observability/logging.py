"""
Structured logging with request ID propagation, plus the debug event channel.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from .context import RequestContext, generate_request_id, get_form_key, get_request_id

DEBUG_LOGGER_NAME = "formdesk.debug"

_STANDARD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    )
)

_debug_enabled = False


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000Z",
        "level": "INFO",
        "logger": "formdesk.store.submissions",
        "message": "Upserted record",
        "request_id": "req-abc123",
        "form_key": "intake",
        ...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_obj["request_id"] = request_id

        form_key = get_form_key()
        if form_key:
            log_obj["form_key"] = form_key

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                log_obj[key] = value

        return json.dumps(log_obj, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        request_id = get_request_id()
        form_key = get_form_key()
        tags = " ".join(t for t in (request_id[:12] if request_id else "", form_key or "") if t)
        rid_str = f"[{tags}] " if tags else ""
        return f"{timestamp} [{record.levelname}] {record.name}: {rid_str}{record.getMessage()}"


def configure_logging(level: str = "INFO", json_format: bool | None = None) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format. If None, JSON when stderr is not a TTY.
    """
    if json_format is None:
        json_format = not sys.stderr.isatty()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_format else HumanFormatter())
    root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_debug_enabled(enabled: bool) -> None:
    """Turn the debug event channel on or off (driven by Settings.debug)."""
    global _debug_enabled  # noqa: PLW0603
    _debug_enabled = bool(enabled)


def is_debug_enabled() -> bool:
    return _debug_enabled


def debug_log(event: str, **fields: Any) -> None:
    """
    Emit a diagnostic event when debug mode is on.

    Never raises: a failing handler must not break the operation being traced.
    """
    if not _debug_enabled:
        return
    try:
        logging.getLogger(DEBUG_LOGGER_NAME).info(event, extra={"event": event, **fields})
    except (TypeError, ValueError, KeyError):
        pass


class CorrelationIdMiddleware:
    """
    ASGI middleware binding a request ID for every log line in a request.

    Usage in api/server.py:
        app.add_middleware(CorrelationIdMiddleware)

    Honors an incoming X-Request-ID header and echoes it on the response.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = None
        for key, value in scope.get("headers", []):
            if key.lower() == b"x-request-id":
                request_id = value.decode("latin-1") or None
                break
        if not request_id:
            request_id = generate_request_id()

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        with RequestContext(request_id=request_id):
            await self.app(scope, receive, send_with_request_id)
