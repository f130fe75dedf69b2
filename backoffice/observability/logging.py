"""
Structured Logging with Structlog.

Every entry carries the service name and version, the request id of the
HTTP request being served (bound by the request middleware), and never the
value of a credential: session tokens, passwords, reset tokens and API
secrets are masked before rendering.
"""

import logging
import sys
from collections.abc import Mapping
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from backoffice.config import settings

REDACTED = "***"

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "current_password",
        "new_password",
        "token",
        "session_token",
        "refresh_token",
        "access_token",
        "secret",
        "api_key",
        "authorization",
        "cookie",
    }
)

# Libraries that log every statement or request line at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "httpx")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def _mask(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else _mask(item)
            for key, item in value.items()
        }
    return value


def redact_sensitive(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential values, including one level of nested dicts (audit details)."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(event_dict[key], Mapping):
            event_dict[key] = _mask(event_dict[key])
    return event_dict


def build_processors(log_level: str, log_format: str) -> list[Processor]:
    """Processor chain: context, redaction, timestamps, exceptions, renderer."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog on top of stdlib logging.

    JSON output looks like:
    {
        "event": "invoice_status_updated",
        "level": "info",
        "timestamp": "2026-01-08T12:00:00.123456Z",
        "logger": "backoffice.services.invoices",
        "service": "coaching-backoffice-api",
        "version": "0.1.0",
        "request_id": "req-123",
        ...event fields
    }
    """
    level = (log_level or settings.log_level).upper()
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level))
    if level != "DEBUG":
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=build_processors(level, log_format or settings.log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request_context(request_id: str, **extra: Any) -> None:
    """Attach request-scoped fields to every log line emitted while serving it."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **extra)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("pending_payment_created", payment_id=str(payment.id))
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]
