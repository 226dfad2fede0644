"""Structured logging utilities for the CodeSent scan client.

This module provides async-safe structured logging using structlog.
Every log line emitted during a scan carries the scan_id for correlation.
Output goes to stderr so stdout stays free for report output.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

# Context variable for scan tracking
scan_id_var: ContextVar[Optional[str]] = ContextVar("scan_id", default=None)

# Event keys whose values are replaced before rendering. The API key must never
# reach a log sink, even if a call site passes it by mistake.
SECRET_KEYS: frozenset[str] = frozenset(
    {"api_key", "apikey", "authorization", "credential", "token", "secret"}
)
REDACTED: str = "[REDACTED]"


def add_scan_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add scan_id to log context if available."""
    scan_id = scan_id_var.get()
    if scan_id:
        event_dict["scan_id"] = scan_id
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add epoch timestamp to log entries."""
    event_dict["timestamp"] = time.time()
    return event_dict


def redact_secrets(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace the value of any secret-looking key with a fixed marker."""
    for key in event_dict:
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False
) -> None:
    """Configure structured logging for the client.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format. If False, use console format.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_scan_id,
        add_timestamp,
        redact_secrets,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        # JSON output for CI pipelines
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Pretty console output for interactive use
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str = "codesent") -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class PerformanceLogger:
    """Times one pipeline step and logs ``step_completed`` / ``step_failed``.

    A failed step is logged at ERROR with the exception text; the exception is
    not suppressed.
    """

    def __init__(self, step: str, logger: Optional[structlog.stdlib.BoundLogger] = None):
        self.step = step
        self.logger = logger or get_logger()
        self.start_time: float = 0

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 3)
        if exc_type is not None:
            self.logger.error(
                "step_failed",
                step=self.step,
                duration_ms=duration_ms,
                error=str(exc_val) or exc_type.__name__,
            )
        else:
            self.logger.debug("step_completed", step=self.step, duration_ms=duration_ms)


def set_scan_id(scan_id: str) -> None:
    """Set scan ID in context for all subsequent logs.

    Args:
        scan_id: Unique identifier for the scan
    """
    scan_id_var.set(scan_id)


def clear_scan_id() -> None:
    """Clear scan ID from context."""
    scan_id_var.set(None)


# Initialize logging with sensible defaults
# The CLI reconfigures this from the loaded config
configure_logging()
