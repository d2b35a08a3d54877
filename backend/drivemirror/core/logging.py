"""Structured logging configuration using structlog.

Every sync step logs snake_case events with keyword context. A ``trace_id``
bound through contextvars ties together all events of one request or one
"sync now" run, and credential values are masked before rendering.
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

from drivemirror.core.config import settings

# Event keys whose values must never reach a log sink
SECRET_KEYS = frozenset({
    "access_token",
    "refresh_token",
    "authorization_code",
    "client_secret",
    "oauth_state",
})

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = (
    "googleapiclient.discovery_cache",
    "google_auth_oauthlib.flow",
    "httpx",
)


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential values passed as event context."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _renderer() -> list[Any]:
    if settings.debug:
        return [structlog.dev.ConsoleRenderer(colors=True)]
    return [
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]


def setup_logging() -> None:
    """Configure structlog and the stdlib root logger."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            redact_secrets,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *_renderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_trace_id(trace_id: str | None = None, **extra: Any) -> str:
    """Bind a correlation id (and optional context) to all subsequent log events.

    Args:
        trace_id: Existing id to reuse. A new UUID4 is generated when omitted.
        **extra: Additional context, e.g. ``user_id``.

    Returns:
        The bound trace id.
    """
    trace_id = trace_id or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(trace_id=trace_id, **extra)
    return trace_id
