"""Unit tests for logging configuration."""

from __future__ import annotations

import asyncio
import json
import logging
import logging.handlers
from io import StringIO
from pathlib import Path

import pytest
import structlog

from lampctl.config import LoggingConfig
from lampctl.logging import bind_trigger_context, get_logger, setup_logging


@pytest.fixture(autouse=True)
def reset_logging() -> None:
    """Reset logging configuration before each test."""
    root = logging.getLogger()
    root.handlers.clear()
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def capture_stream() -> StringIO:
    """Create a StringIO stream for capturing log output."""
    return StringIO()


@pytest.fixture
def json_config() -> LoggingConfig:
    """Create a LoggingConfig for JSON output to stdout."""
    return LoggingConfig(level="INFO", format="json", file=None)


def _capture(stream: StringIO) -> None:
    # Replace stdout handler with our capture stream
    logging.getLogger().handlers[0].stream = stream


def test_json_output_format(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that JSON format produces valid JSON output."""
    setup_logging(json_config)
    _capture(capture_stream)

    logger = get_logger("lampctl.test")
    logger.info("mode_enabled", mode="busy")

    log_entry = json.loads(capture_stream.getvalue().strip())
    assert log_entry["event"] == "mode_enabled"
    assert log_entry["mode"] == "busy"
    assert log_entry["level"] == "info"
    assert log_entry["logger"] == "lampctl.test"
    assert "timestamp" in log_entry


def test_console_output_format(capture_stream: StringIO) -> None:
    """Test that console format produces human-readable output."""
    setup_logging(LoggingConfig(level="DEBUG", format="console"))
    _capture(capture_stream)

    get_logger("lampctl.test").debug("timer_sleeping", seconds=12.5)

    output = capture_stream.getvalue()
    assert "timer_sleeping" in output
    assert "seconds" in output
    with pytest.raises(json.JSONDecodeError):
        json.loads(output.strip())


def test_log_level_filtering(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that INFO level filters out DEBUG."""
    setup_logging(json_config)
    _capture(capture_stream)

    logger = get_logger("lampctl.test")
    logger.debug("debug_message")
    assert capture_stream.getvalue() == ""

    logger.warning("warning_message")
    assert "warning_message" in capture_stream.getvalue()


def test_trigger_context_binding(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that the bound trigger label appears in log entries."""
    setup_logging(json_config)
    _capture(capture_stream)

    bind_trigger_context("timer:busy")
    get_logger("lampctl.test").info("mode_enabled")

    log_entry = json.loads(capture_stream.getvalue().strip())
    assert log_entry["trigger"] == "timer:busy"


@pytest.mark.asyncio
async def test_trigger_context_is_per_task(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that a label bound inside one task does not leak into another."""
    setup_logging(json_config)
    _capture(capture_stream)
    logger = get_logger("lampctl.test")

    async def bound() -> None:
        bind_trigger_context("count-files")
        logger.info("inside")

    await asyncio.create_task(bound())
    logger.info("outside")

    inside, outside = (json.loads(line) for line in capture_stream.getvalue().splitlines())
    assert inside["trigger"] == "count-files"
    assert "trigger" not in outside


def test_file_rotation_handler_configuration(tmp_path: Path) -> None:
    """Test that file rotation handler is configured correctly."""
    log_file = tmp_path / "logs" / "lampctl.log"
    config = LoggingConfig(
        level="INFO",
        format="json",
        file=log_file,
        rotation_size_mb=2,
        retention_count=3,
    )

    setup_logging(config)
    assert log_file.exists()

    root = logging.getLogger()
    assert len(root.handlers) == 1
    handler = root.handlers[0]
    assert isinstance(handler, logging.handlers.RotatingFileHandler)
    assert handler.maxBytes == 2 * 1024 * 1024
    assert handler.backupCount == 3

    get_logger("lampctl.test").info("lamp_command_written", mode="quiet")
    handler.flush()

    log_entry = json.loads(log_file.read_text().strip())
    assert log_entry["event"] == "lamp_command_written"
    assert log_entry["mode"] == "quiet"
