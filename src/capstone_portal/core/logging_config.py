"""Structured JSON logging configuration using structlog.

Call ``configure_logging()`` once at application startup in ``api/main.py``.
Workflow modules use the stdlib logging API with ``extra`` context::

    import logging
    logger = logging.getLogger(__name__)
    logger.info("Application approved", extra={"application_id": str(app_id)})

Records are routed through structlog's ``ProcessorFormatter`` so the
``extra`` keys land as top-level JSON fields.  Code that wants richer
binding can use ``structlog.get_logger(__name__)`` directly.

A ``request_id`` context variable is populated by the request-logging
middleware in ``api/main.py`` and merged into every log record emitted
during that request's lifetime.
"""

from __future__ import annotations

import logging
import logging.config
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, WrappedLogger

# ---------------------------------------------------------------------------
# Context variable: set by the HTTP middleware, read by the log processor
# ---------------------------------------------------------------------------

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Per-request ID propagated from the HTTP middleware to log processors."""


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "password",
    "secret",
    "token",
    "bearer",
    "authorization",
    "jwt",
})
"""Lower-cased substrings that identify log event-dict keys whose values
must be redacted before the record reaches any renderer."""

# stdlib LogRecord attributes that are not user-supplied ``extra`` keys.
_RESERVED_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Replace values of secret-bearing keys with a redaction marker.

    Scans top-level keys and one level of nested ``dict`` values.  Keys are
    matched case-insensitively against :data:`_SECRET_SUBSTRINGS`.
    """
    redacted = "[REDACTED]"
    for key in list(event_dict.keys()):
        if any(secret in key.lower() for secret in _SECRET_SUBSTRINGS):
            event_dict[key] = redacted
            continue
        val = event_dict[key]
        if isinstance(val, dict):
            for nested_key in list(val.keys()):
                if any(secret in str(nested_key).lower() for secret in _SECRET_SUBSTRINGS):
                    val[nested_key] = redacted
    return event_dict


def _inject_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Inject the current request ID into the log event dict if set.

    Runs after ``merge_contextvars`` as a fallback for code paths that set the
    ``ContextVar`` directly rather than using ``bind_contextvars``.
    """
    rid = request_id_var.get()
    if rid is not None and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


def _merge_stdlib_extra(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Lift ``extra={...}`` keys from a stdlib ``LogRecord`` into the event dict.

    Only applies to records that entered through ``logging.getLogger()``;
    structlog-native events carry no ``_record``.
    """
    record: logging.LogRecord | None = event_dict.get("_record")
    if record is None:
        return event_dict
    for key, value in vars(record).items():
        if key in _RESERVED_RECORD_ATTRS or key.startswith("_"):
            continue
        event_dict.setdefault(key, value)
    return event_dict


# ---------------------------------------------------------------------------
# Public configuration entry-point
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog with JSON output for production.

    In production (log_level != ``"DEBUG"``), outputs newline-delimited JSON.
    In development (log_level == ``"DEBUG"``), uses structlog's
    ``ConsoleRenderer`` for human-readable coloured output.

    Standard fields added to every log record: ``timestamp``, ``level``,
    ``logger``, ``request_id`` (when inside a request) and ``event``.

    Calling this more than once is safe; both structlog and the root handler
    are replaced on each call.

    Args:
        log_level: Logging verbosity string.  Case-insensitive.
    """
    level_upper = log_level.upper()
    numeric_level = getattr(logging, level_upper, logging.INFO)
    is_development = level_upper == "DEBUG"

    # ------------------------------------------------------------------
    # Shared pre-chain processors (run before the final renderer)
    # ------------------------------------------------------------------
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if is_development:
        final_renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(
            colors=True,
        )
    else:
        final_renderer = structlog.processors.JSONRenderer()

    # ------------------------------------------------------------------
    # Route stdlib ``logging.getLogger(__name__)`` through structlog.
    # ------------------------------------------------------------------
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[_merge_stdlib_extra, *shared_processors],
        processors=[
            _redact_secrets,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            final_renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    if not is_development:
        for noisy_logger in ("uvicorn.access", "httpx", "httpcore", "aiosqlite"):
            logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
