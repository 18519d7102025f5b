"""Pytest fixtures for CLI integration tests.

Provides a Typer CLI runner, TOML configuration files written to a temporary
directory, and cleanup of the logging handlers each CLI invocation installs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterator

import pytest
import structlog
from typer.testing import CliRunner

BASIC_CONFIG = """\
default-mode = "quiet"

[[modes]]
name = "quiet"
command = { colour = "off" }

[[modes]]
name = "busy"
command = { colour = "amber", blink-rate = 2 }
"""


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI runner."""
    return CliRunner()


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[[str], Path]:
    """Return a helper writing TOML text to a config file."""

    def write(text: str) -> Path:
        path = tmp_path / "lampctl.toml"
        path.write_text(text)
        return path

    return write


@pytest.fixture
def config_text() -> str:
    """TOML text of the two-mode config."""
    return BASIC_CONFIG


@pytest.fixture
def basic_config(write_config: Callable[[str], Path]) -> Path:
    """Two-mode config without triggers or output file."""
    return write_config(BASIC_CONFIG)


@pytest.fixture(autouse=True)
def reset_logging(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep environment overrides out and drop handlers bound to captured streams."""
    for name in ("LAMPCTL_OUTPUT_FILE", "LAMPCTL_DEFAULT_MODE"):
        monkeypatch.delenv(name, raising=False)
    yield
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
