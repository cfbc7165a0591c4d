"""structlog configuration for the exporter process."""

from __future__ import annotations

import logging
import sys

import structlog


def configure_logging(verbose: bool = False, *, colors: bool | None = None) -> None:
    """
    Configure structlog for console output.

    Args:
        verbose: Emit debug-level events (per-event dumps, swallowed poll
            failures). Info and above otherwise.
        colors: Force ANSI colors on or off. Defaults to "when stderr is a TTY".
    """
    level = logging.DEBUG if verbose else logging.INFO
    if colors is None:
        colors = sys.stderr.isatty()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
