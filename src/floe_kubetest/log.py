"""structlog configuration and log separators."""

from __future__ import annotations

import logging

import structlog

logger = structlog.get_logger(__name__)


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
) -> None:
    """Configure structlog for test runs.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: If True, output logs as JSON. If False, use console format.

    Examples:
        >>> configure_logging(log_level="DEBUG")
        >>> structlog.get_logger().info("configured")
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        msg = f"Unknown log level: {log_level}"
        raise ValueError(msg)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )


def separator(char: str = "#", length: int = 76) -> str:
    """Return a visual separator line."""
    return char * length


def log_separator(char: str = "#", length: int = 76) -> None:
    """Emit a visual separator line at info level."""
    logger.info(separator(char, length))


__all__ = [
    "configure_logging",
    "log_separator",
    "separator",
]
