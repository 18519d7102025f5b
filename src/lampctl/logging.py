"""Structured logging configuration for lampctl.

This module configures structlog with support for:
- JSON and console output formats
- File rotation based on size
- Trigger context binding, so every line emitted from a timer or the
  count file watcher says which trigger produced it

The logging system integrates structlog with Python's stdlib logging
for handlers (file rotation), while using structlog exclusively for
actual log emission.

Example usage:
    >>> from lampctl.config import LoggingConfig
    >>> from lampctl.logging import setup_logging, get_logger, bind_trigger_context
    >>>
    >>> setup_logging(LoggingConfig(level="INFO", format="console"))
    >>>
    >>> logger = get_logger(__name__)
    >>> bind_trigger_context("timer:busy")
    >>> logger.info("mode_enabled", mode="busy")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys

import structlog

from lampctl.config import LoggingConfig


def bind_trigger_context(trigger: str) -> None:
    """Bind a trigger label to all subsequent logs in the current context.

    Each asyncio task runs in its own copy of the context, so a label bound
    inside a timer task does not leak into sibling tasks.

    Args:
        trigger: Label such as ``"timer:busy"`` or ``"count-files"``
    """
    structlog.contextvars.bind_contextvars(trigger=trigger)


def setup_logging(config: LoggingConfig) -> None:
    """Configure structlog with the given configuration.

    This function sets up the complete logging pipeline including:
    - JSON or console rendering based on config.format
    - File rotation if config.file is specified
    - Timestamp, log level, and logger name processors

    Args:
        config: Logging configuration from LampConfig
    """
    log_level = getattr(logging, config.level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if config.file is not None:
        config.file.parent.mkdir(parents=True, exist_ok=True)

        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            filename=config.file,
            maxBytes=config.rotation_size_mb * 1024 * 1024,
            backupCount=config.retention_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    handler.setLevel(log_level)
    root_logger.addHandler(handler)

    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:  # console
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            # Picks up the trigger label from bind_trigger_context
            structlog.contextvars.merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog BoundLogger instance
    """
    return structlog.get_logger(name)
