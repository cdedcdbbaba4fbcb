"""structlog setup shared by the API process and the Celery worker.

``configure_logging()`` routes both ``logging.getLogger(__name__)`` records
and ``structlog.get_logger(__name__)`` events through one processor chain
and one stdout handler.  Output is JSON lines, or coloured console output
when the level is ``DEBUG``.

Every event carries ``timestamp``, ``level``, ``logger`` and ``event``, plus
the current ``request_id`` (set by the HTTP middleware) and ``job_id`` (set
while an export job runs) when those are known.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""ID of the HTTP request being served."""

job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)
"""ID of the export job being processed."""

_CONTEXT_VARS: tuple[tuple[str, ContextVar[str | None]], ...] = (
    ("request_id", request_id_var),
    ("job_id", job_id_var),
)

#: Key fragments whose values never reach a renderer.
_SECRET_MARKERS: tuple[str, ...] = (
    "api_key",
    "authorization",
    "bearer",
    "credential",
    "password",
    "secret",
    "token",
)

_REDACTED = "[REDACTED]"

_QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "uvicorn.access")


def _is_secret(key: object) -> bool:
    return isinstance(key, str) and any(marker in key.lower() for marker in _SECRET_MARKERS)


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Mask secret-looking keys, including those of nested dicts one level down."""
    for key, value in list(event_dict.items()):
        if _is_secret(key):
            event_dict[key] = _REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                inner: _REDACTED if _is_secret(inner) else inner_value
                for inner, inner_value in value.items()
            }
    return event_dict


def _inject_context_ids(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Add ``request_id`` / ``job_id`` from their context vars unless already bound."""
    for name, var in _CONTEXT_VARS:
        value = var.get()
        if value is not None:
            event_dict.setdefault(name, value)
    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """Install the structlog chain and a single stdout handler on the root logger.

    Safe to call repeatedly; the root handlers are replaced each time.

    Args:
        log_level: Level name, case-insensitive.  ``"DEBUG"`` also switches
            to the console renderer and leaves HTTP client loggers audible.
    """
    level_name = log_level.upper()
    level = getattr(logging, level_name, logging.INFO)
    debug = level_name == "DEBUG"

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_context_ids,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: Processor = (
        structlog.dev.ConsoleRenderer(colors=True)
        if debug
        else structlog.processors.JSONRenderer()
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            # stdlib records: lift extra={...} into the event first.
            foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *shared],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if debug else logging.WARNING)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
