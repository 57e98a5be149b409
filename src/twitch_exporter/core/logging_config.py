"""Structured logging configuration using structlog.

Call ``configure_logging()`` once at startup (the CLI and ``create_app()`` both
do).  All modules can then use either the stdlib logging API or structlog
directly:

Stdlib usage::

    import logging
    logger = logging.getLogger(__name__)
    logger.info("message", extra={"key": "value"})

Structlog usage (richer context binding)::

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("message", key="value", channel="alice")

A ``request_id`` context variable is populated by the request-logging
middleware in ``api/main.py`` and automatically merged into every log record
emitted during that request's lifetime, so all upstream failures of a single
scrape can be correlated.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, WrappedLogger

# ---------------------------------------------------------------------------
# Context variable: set by the HTTP middleware, read by the log processor
# ---------------------------------------------------------------------------

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Per-request ID propagated from the HTTP middleware to log processors."""

LOG_FORMATS: frozenset[str] = frozenset({"text", "json"})
"""Accepted values for the ``LOG_FORMAT`` setting."""


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "secret",
    "token",
    "credential",
    "bearer",
    "authorization",
    "password",
})
"""Lower-cased substrings that identify log event-dict keys whose values
must be redacted before the record reaches any renderer."""

_SECRET_KEYS: frozenset[str] = frozenset({"code", "auth_code"})
"""Exact keys that are redacted.  ``code`` is not a substring match so that
fields such as ``status_code`` survive."""


def _is_secret_key(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _SECRET_KEYS:
        return True
    return any(secret in key_lower for secret in _SECRET_SUBSTRINGS)


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Replace values of secret-bearing keys with a redaction marker.

    Scans both top-level keys and any nested ``dict`` values one level deep.
    Keys are matched case-insensitively against :data:`_SECRET_SUBSTRINGS`.
    Access and refresh tokens travel through the credential manager, so this
    keeps them out of log aggregators even when a caller binds them by mistake.

    Args:
        logger: The wrapped logger instance (unused).
        method_name: The log method name (unused).
        event_dict: Mutable event dictionary being assembled.

    Returns:
        The event dict with sensitive values replaced by ``"[REDACTED]"``.
    """
    redacted = "[REDACTED]"
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if _is_secret_key(key):
            event_dict[key] = redacted
            continue
        val = event_dict[key]
        if isinstance(val, dict):
            for nested_key in list(val.keys()):
                if _is_secret_key(str(nested_key)):
                    val[nested_key] = redacted
    return event_dict


def _inject_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Inject the current request ID into the log event dict if set."""
    rid = request_id_var.get()
    if rid is not None and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


# ---------------------------------------------------------------------------
# Public configuration entry-point
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO", log_format: str = "text") -> None:
    """Configure structlog and route stdlib logging through it.

    ``log_format="json"`` outputs newline-delimited JSON suitable for log
    aggregators.  ``log_format="text"`` uses structlog's ``ConsoleRenderer``
    for human-readable output.  Unknown formats fall back to ``text`` with a
    warning, mirroring how an invalid log level falls back to ``INFO``.

    Standard fields added to every log record:

    - ``timestamp``: ISO 8601 string.
    - ``level``: Log level name (``"info"``, ``"warning"``, etc.).
    - ``logger``: Module name that emitted the record.
    - ``request_id``: Current HTTP request ID (omitted outside a request).
    - ``event``: The log message string.

    This function is idempotent: calling it multiple times is safe because
    structlog replaces its own configuration each call.

    Args:
        log_level: One of ``"DEBUG"``, ``"INFO"``, ``"WARNING"``, ``"ERROR"``,
            ``"CRITICAL"``.  Case-insensitive.
        log_format: ``"text"`` or ``"json"``.  Case-insensitive.
    """
    level_upper = log_level.upper()
    numeric_level = getattr(logging, level_upper, None)
    invalid_level = not isinstance(numeric_level, int)
    if invalid_level:
        numeric_level = logging.INFO

    format_lower = log_format.lower()
    invalid_format = format_lower not in LOG_FORMATS
    if invalid_format:
        format_lower = "text"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_request_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format_lower == "json":
        final_renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        final_renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            final_renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # Drop previously attached handlers so repeated calls (CLI, then
    # create_app(), then tests) do not duplicate output.
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    if numeric_level > logging.DEBUG:
        for noisy_logger in ("uvicorn.access", "httpx", "httpcore"):
            logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logger = structlog.get_logger(__name__)
    if invalid_level:
        logger.warning("invalid_log_level", requested=log_level, using="INFO")
    if invalid_format:
        logger.warning("invalid_log_format", requested=log_format, using="text")
