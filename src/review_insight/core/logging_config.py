"""Structured logging configuration using structlog.

Call ``configure_logging()`` once per process: ``api/main.py`` does it at
application startup and ``workers/celery_app.py`` does it when a worker
boots.  Modules then obtain a logger with::

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("analysis.progress", task_id=str(task_id), progress=45)

Records emitted through the stdlib ``logging`` API (uvicorn, Celery,
SQLAlchemy) are routed through the same processor chain so the whole
process writes one consistent format.

A ``request_id`` context variable is populated by the request-logging
middleware in ``api/main.py`` and merged into every record emitted while
that request is being handled.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Per-request ID propagated from the HTTP middleware to log processors."""


_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "api_key",
    "password",
    "secret",
    "token",
    "authorization",
    "bearer",
    "cookie",
    "signature",
})
"""Lower-cased substrings identifying event-dict keys whose values must never
reach a renderer (OpenRouter keys, JWTs, Stripe signatures, OAuth codes)."""

_REDACTED = "[REDACTED]"

_NOISY_LOGGERS: tuple[str, ...] = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "urllib3",
    "stripe",
)


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Replace values of secret-bearing keys with ``"[REDACTED]"``.

    Top-level keys and the keys of nested dicts one level deep (e.g.
    ``headers={...}``) are matched case-insensitively.
    """
    for key in list(event_dict.keys()):
        if _is_secret(key):
            event_dict[key] = _REDACTED
            continue
        value = event_dict[key]
        if isinstance(value, dict):
            for nested_key in list(value.keys()):
                if isinstance(nested_key, str) and _is_secret(nested_key):
                    value[nested_key] = _REDACTED
    return event_dict


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SECRET_SUBSTRINGS)


def _inject_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Add the current HTTP request ID to the event dict when one is set."""
    rid = request_id_var.get()
    if rid is not None and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog and the stdlib root logger.

    ``DEBUG`` selects structlog's coloured ``ConsoleRenderer``; every other
    level emits newline-delimited JSON for log aggregation.  Every record
    carries ``timestamp``, ``level``, ``logger``, ``event`` and, inside a
    request, ``request_id``.

    Safe to call more than once: previously attached root handlers are
    replaced rather than duplicated.

    Args:
        log_level: One of ``"DEBUG"``, ``"INFO"``, ``"WARNING"``,
            ``"ERROR"``, ``"CRITICAL"``.  Case-insensitive.
    """
    level_upper = log_level.upper()
    numeric_level = getattr(logging, level_upper, logging.INFO)
    is_development = level_upper == "DEBUG"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_request_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: Processor
    if is_development:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    if not is_development:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
