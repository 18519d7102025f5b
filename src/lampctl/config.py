"""Configuration management for lampctl.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.

Configuration loading priority (highest to lowest):
1. Programmatic overrides (passed to LampConfig constructor)
2. Values present in the TOML configuration file
3. Environment variables (LAMPCTL_* prefix)
4. Default values defined in this module

TOML keys may be written in kebab-case (``default-mode``) or snake_case
(``default_mode``). Mode commands are opaque and passed through untouched.

Example TOML configuration:
    output-file = "/run/lamp/command.json"
    default-mode = "quiet"

    [[modes]]
    name = "quiet"
    command = { colour = "off" }

    [[modes]]
    name = "busy"
    command = { colour = "red", blink = true }

    [[timers]]
    mode = "busy"
    schedule = "0 9 * * 1-5"
    duration = 1800

    [[count-files]]
    mode = "busy"
    file = "/run/lamp/unread"

Example environment variable override:
    LAMPCTL_LOGGING__LEVEL="DEBUG"
    LAMPCTL_WATCHER__DEBOUNCE_MS=25
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import tomli
from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Sections whose entries are tables with structural keys
_LIST_SECTIONS = ("modes", "timers", "count_files")
_TABLE_SECTIONS = ("watcher", "logging")


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stdout only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="LAMPCTL_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=10, ge=1, le=1000)
    retention_count: int = Field(default=5, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class WatcherConfig(BaseSettings):
    """Count file watcher configuration.

    Attributes:
        debounce_ms: Milliseconds to wait after the first change notification
            so that a burst of related events is handled as one batch
    """

    model_config = SettingsConfigDict(
        env_prefix="LAMPCTL_WATCHER__",
        extra="forbid",
    )

    debounce_ms: int = Field(default=10, ge=0, le=10_000)


class LampMode(BaseModel):
    """A named lamp mode and the command written while it wins arbitration.

    Attributes:
        name: Unique mode name
        command: Opaque command value handed to the lamp driver
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1)
    command: JsonValue


class TimerConfig(BaseModel):
    """A recurring schedule that keeps a mode active for a fixed duration.

    Attributes:
        mode: Mode enabled for each scheduled run
        schedule: Cron expression (croniter syntax)
        duration: Seconds each run stays active
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    mode: str
    schedule: str
    duration: int = Field(ge=0)

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        """Validate the cron expression parses."""
        v = v.strip()
        if not croniter.is_valid(v):
            raise ValueError(f"Invalid cron schedule: {v!r}")
        return v


class CountFileConfig(BaseModel):
    """Binds a count file to a mode.

    Attributes:
        mode: Mode enabled while the file holds a count above zero
        file: Absolute path of the count file
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    mode: str
    file: Path

    @field_validator("file")
    @classmethod
    def make_absolute(cls, v: Path) -> Path:
        """Expand ``~`` and anchor relative paths at the working directory."""
        return Path(os.path.abspath(os.path.expanduser(v)))


class LampConfig(BaseSettings):
    """Root configuration for lampctl.

    Modes are listed from lowest to highest priority: when several modes are
    active, the one defined last wins.

    Environment variable format for nested config:
        LAMPCTL_<SECTION>__<KEY>=value

    Example:
        LAMPCTL_OUTPUT_FILE="/run/lamp/command.json"
        LAMPCTL_LOGGING__FORMAT="json"
    """

    model_config = SettingsConfigDict(
        env_prefix="LAMPCTL_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    output_file: Path | None = Field(default=None)
    default_mode: str
    modes: list[LampMode] = Field(min_length=1)
    timers: list[TimerConfig] = Field(default_factory=list)
    count_files: list[CountFileConfig] = Field(default_factory=list)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def check_mode_references(self) -> LampConfig:
        """Ensure mode names are unique and every referenced mode is defined."""
        defined: set[str] = set()
        for mode in self.modes:
            if mode.name in defined:
                raise ValueError(f"Mode {mode.name} defined more than once.")
            defined.add(mode.name)

        referenced = [self.default_mode]
        referenced.extend(timer.mode for timer in self.timers)
        referenced.extend(count_file.mode for count_file in self.count_files)
        for name in referenced:
            if name not in defined:
                raise ValueError(f"Mode {name} not defined.")
        return self

    def mode_names(self) -> list[str]:
        """Return mode names from lowest to highest priority."""
        return [mode.name for mode in self.modes]


def load_config(config_path: Path | None = None) -> LampConfig:
    """Load configuration from TOML file with environment variable fallbacks.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./lampctl.toml (current directory)
    3. ~/.config/lampctl/config.toml (user config directory)

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    default locations.

    Returns:
        LampConfig: Fully resolved and cross-checked configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If the TOML file is malformed or the configuration is invalid.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path: Path | None = config_path
    else:
        search_paths = [
            Path.cwd() / "lampctl.toml",
            Path.home() / ".config" / "lampctl" / "config.toml",
        ]
        selected_path = None
        for path in search_paths:
            if path.exists():
                selected_path = path
                break

    try:
        if selected_path is not None:
            with open(selected_path, "rb") as f:
                toml_data = _normalise_keys(tomli.load(f))
        return LampConfig(**toml_data)
    except Exception as e:
        if selected_path:
            raise ValueError(f"Invalid configuration in {selected_path}: {e}") from e
        raise ValueError(f"Invalid configuration: {e}") from e


def resolve_output_file(config: LampConfig, override: Path | None = None) -> Path:
    """Pick the output sink path, preferring an explicit override.

    Raises:
        ValueError: If neither the override nor the config names an output file.
    """
    output_file = override if override is not None else config.output_file
    if output_file is None:
        raise ValueError("Must specify output file in either arguments or config.")
    return output_file


def _normalise_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Rewrite kebab-case structural keys to snake_case.

    Only top-level keys, the keys of entries in list sections, and the keys of
    table sections are rewritten. Mode commands are left exactly as written.
    """
    normalised: dict[str, Any] = {}
    for key, value in data.items():
        key = key.replace("-", "_")
        if key in _LIST_SECTIONS and isinstance(value, list):
            value = [
                {k.replace("-", "_"): v for k, v in entry.items()}
                if isinstance(entry, dict)
                else entry
                for entry in value
            ]
        elif key in _TABLE_SECTIONS and isinstance(value, dict):
            value = {k.replace("-", "_"): v for k, v in value.items()}
        normalised[key] = value
    return normalised
