"""
Structured logging configuration using structlog.

- Console output while developing, JSON or key/value lines otherwise
- Correlation IDs carried across async boundaries (one per CLI command or webhook)
- Wallet credentials and payment preimages redacted, bolt11 invoices shortened

Logs go to stderr so that command output on stdout (e.g. ``--json``) stays parseable.
"""

import logging
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, cast

import structlog
from structlog.types import EventDict, Processor

if TYPE_CHECKING:
    from shiftmarket.utils.config import Settings

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

REDACTED = "***REDACTED***"

# Any key containing one of these fragments is redacted
_SENSITIVE_FRAGMENTS = ("token", "secret", "api_key", "preimage", "password")

# Keys holding bolt11 strings, which are long and add nothing after the prefix
_INVOICE_KEYS = frozenset({"invoice", "payment_request", "pr"})
_INVOICE_PREVIEW_CHARS = 24


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set correlation ID for the current context.

    Args:
        correlation_id: Custom correlation ID. If None, generates a new UUID.

    Returns:
        The correlation ID that was set.
    """
    if correlation_id is None:
        correlation_id = uuid.uuid4().hex[:12]
    _correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


def add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the context's correlation ID unless the caller passed one."""
    event_dict.setdefault("correlation_id", get_correlation_id())
    return event_dict


def filter_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Redact credentials and preimages; shorten invoices."""
    for key, value in event_dict.items():
        lowered = key.lower()
        if any(fragment in lowered for fragment in _SENSITIVE_FRAGMENTS):
            event_dict[key] = REDACTED
        elif (
            lowered in _INVOICE_KEYS
            and isinstance(value, str)
            and len(value) > _INVOICE_PREVIEW_CHARS
        ):
            event_dict[key] = value[:_INVOICE_PREVIEW_CHARS] + "..."
    return event_dict


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    from shiftmarket import __version__

    event_dict["app"] = "shiftmarket"
    event_dict["version"] = __version__
    return event_dict


def _renderer(json_logs: bool, dev_mode: bool) -> list[Processor]:
    if dev_mode:
        return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]
    if json_logs:
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"])]


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    dev_mode: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Emit one JSON object per line (ignored in dev mode)
        dev_mode: Human-friendly console output
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    shared_processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_correlation_id,
        add_app_context,
        filter_sensitive_data,
    ]

    structlog.configure(
        processors=shared_processors + _renderer(json_logs, dev_mode),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    logging.getLogger().setLevel(level)
    # Relay and HTTP client libraries are chatty at DEBUG
    for name in ("websockets", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def configure_logging_from_settings(settings: "Settings", verbose: bool = False) -> None:
    """Apply the logging fields of ``Settings``; `verbose` forces DEBUG."""
    configure_logging(
        log_level="DEBUG" if verbose else settings.log_level,
        json_logs=settings.json_logs,
        dev_mode=settings.dev_mode,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("payment_invoice_created", payment_hash="ab12...", total_amount=10200)
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


@contextmanager
def log_duration(
    operation: str, logger: structlog.stdlib.BoundLogger, **context: Any
) -> Iterator[dict[str, Any]]:
    """Log ``{operation}_completed`` / ``{operation}_failed`` with the elapsed time.

    The yielded dict is merged into the completion entry, so the body can add
    result counts.

    Usage:
        with log_duration("relay_query", logger, relays=3) as extra:
            events = ...
            extra["events"] = len(events)
    """
    extra: dict[str, Any] = {}
    start = time.perf_counter()
    try:
        yield extra
    except Exception as e:
        logger.warning(
            f"{operation}_failed",
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            error=str(e),
            error_type=type(e).__name__,
            **context,
        )
        raise
    logger.debug(
        f"{operation}_completed",
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
        **context,
        **extra,
    )


# Initialize logging on module import
configure_logging()
