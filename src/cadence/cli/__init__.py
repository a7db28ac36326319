"""Cadence CLI.

Operator commands over the engine's stored state. Built with Typer; command
logic lives in the commands/ modules and this file only assembles the app.

Package structure:
    cli/
    ├── __init__.py           # App assembly and global options
    ├── helpers.py            # Config loading, engine lifetime, task fixtures
    ├── output.py             # Rich formatting
    └── commands/
        ├── learning.py       # insights, similar, anomalies, prioritize
        └── experiment.py     # experiment create/analyze/stop/list
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from cadence import __version__

from . import helpers as helpers
from .commands import anomalies, experiment_app, insights, prioritize, similar
from .helpers import set_config_path, set_log_format, set_log_level
from .output import console

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="cadence",
    help="Adaptive task prioritization and experimentation engine",
    add_completion=False,
    no_args_is_help=True,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Cadence v{__version__}")
        raise typer.Exit()


def config_callback(value: Path | None) -> Path | None:
    if value:
        set_config_path(value)
    return value


def log_level_callback(value: str | None) -> str | None:
    """Set log level from CLI option."""
    if value:
        set_log_level(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            callback=config_callback,
            help="Engine configuration YAML file",
            envvar="CADENCE_CONFIG",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="CADENCE_LOG_LEVEL",
        ),
    ] = "WARNING",
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json or console",
            envvar="CADENCE_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """Cadence - adaptive task prioritization and experimentation engine."""


# =============================================================================
# Command registration
# =============================================================================

app.command()(insights)
app.command()(similar)
app.command()(anomalies)
app.command()(prioritize)

app.add_typer(experiment_app)


__all__ = ["app", "main", "console"]
