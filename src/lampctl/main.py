"""Main CLI entry point for lampctl.

This module provides the Typer application used to run the lamp daemon and
to inspect its configuration and output.

Usage:
    lampctl --config lamp.toml run /run/lamp/command.json
    lampctl --config lamp.toml check
    lampctl --config lamp.toml status
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lampctl.config import LampConfig, load_config, resolve_output_file
from lampctl.logging import get_logger, setup_logging
from lampctl.orchestrator.runner import LampRunner
from lampctl.orchestrator.sink import MISSING, CommandSink, encode_command

app = typer.Typer(
    name="lampctl",
    help="lampctl: priority-arbitrated lamp mode controller",
    no_args_is_help=True,
)

console = Console()
logger = get_logger(__name__)


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded lamp configuration
        config_path: File the configuration was loaded from, if any
    """

    def __init__(self, config: LampConfig, config_path: Path | None = None):
        self.config = config
        self.config_path = config_path


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: LampConfig, config_path: Path | None = None) -> AppContext:
    """Initialize the global application context."""
    global _app_context
    _app_context = AppContext(config, config_path)
    return _app_context


def _output_file_or_exit(config: LampConfig, override: Path | None) -> Path:
    try:
        return resolve_output_file(config, override)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


@app.command()
def run(
    output_file: Annotated[
        Optional[Path],
        typer.Argument(help="Command file read by the lamp driver (overrides output-file)"),
    ] = None,
) -> None:
    """Run the lamp controller until a trigger fails or the process is stopped.

    The default mode is enabled first, then every timer and the count file
    watcher run concurrently. Any trigger failure stops the whole controller
    with exit code 1.
    """
    ctx = get_app_context()
    config = ctx.config
    sink_path = _output_file_or_exit(config, output_file)

    console.print(
        Panel(
            f"[bold cyan]lampctl[/bold cyan]\n\n"
            f"[bold]Output file:[/bold] {sink_path}\n"
            f"[bold]Default mode:[/bold] {config.default_mode}\n"
            f"[bold]Modes:[/bold] {', '.join(config.mode_names())}\n"
            f"[bold]Timers:[/bold] {len(config.timers)}\n"
            f"[bold]Count files:[/bold] {len(config.count_files)}",
            title="Starting Lamp Controller",
            border_style="cyan",
        )
    )

    runner = LampRunner(config, sink_path)
    try:
        asyncio.run(runner.run())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted. Lamp controller stopped.[/yellow]")
        raise typer.Exit(code=130)
    except Exception as e:
        logger.error("lamp_controller_failed", error=str(e), exc_info=True)
        console.print(f"[red]Fatal error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print("[green]All triggers finished[/green]")


@app.command()
def check() -> None:
    """Validate the configuration and print the modes and triggers."""
    ctx = get_app_context()
    config = ctx.config

    source = str(ctx.config_path) if ctx.config_path else "environment"
    console.print(f"[green]Configuration OK[/green] [dim]({source})[/dim]")

    modes = Table(title="Modes (lowest to highest priority)")
    modes.add_column("Priority", justify="right", style="bold cyan")
    modes.add_column("Name")
    modes.add_column("Command")
    for rank, mode in enumerate(config.modes):
        name = mode.name
        if name == config.default_mode:
            name += " [dim](default)[/dim]"
        modes.add_row(str(rank), name, encode_command(mode.command))
    console.print(modes)

    if config.timers:
        timers = Table(title="Timers")
        timers.add_column("Mode", style="bold cyan")
        timers.add_column("Schedule")
        timers.add_column("Duration (s)", justify="right")
        for timer in config.timers:
            timers.add_row(timer.mode, timer.schedule, str(timer.duration))
        console.print(timers)

    if config.count_files:
        count_files = Table(title="Count files")
        count_files.add_column("Mode", style="bold cyan")
        count_files.add_column("File")
        for count_file in config.count_files:
            count_files.add_row(count_file.mode, str(count_file.file))
        console.print(count_files)


@app.command()
def status(
    output_file: Annotated[
        Optional[Path],
        typer.Argument(help="Command file read by the lamp driver (overrides output-file)"),
    ] = None,
) -> None:
    """Show the command currently stored in the output file."""
    ctx = get_app_context()
    config = ctx.config
    sink_path = _output_file_or_exit(config, output_file)

    try:
        command = CommandSink(sink_path).read()
    except OSError as e:
        console.print(f"[red]Cannot read {sink_path}:[/red] {e}")
        raise typer.Exit(code=1)

    if command is MISSING:
        console.print(f"[yellow]No command stored in {sink_path}[/yellow]")
        return

    # Highest priority match, as that is the mode that would have written it
    matching = [mode.name for mode in reversed(config.modes) if mode.command == command]
    table = Table(title="Lamp Status", show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("Output file", str(sink_path))
    table.add_row("Command", encode_command(command))
    table.add_row("Mode", matching[0] if matching else "[dim]unknown[/dim]")
    console.print(table)


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Load configuration, configure logging and initialize application context."""
    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config)

    initialize_context(config, config_path)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
