"""Rich output formatting for the Cadence CLI.

Table builders with consistent styling plus the JSON and error printers used
by every command.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table

# =============================================================================
# Shared console instance
# =============================================================================

console = Console()


# =============================================================================
# Formatters
# =============================================================================


def format_timestamp(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M %Z").strip()


def format_duration(seconds: float | None) -> str:
    """Format seconds as a compact human duration (e.g. "1h 5m")."""
    if seconds is None:
        return "-"
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m" if minutes else f"{hours}h"


def format_optional(value: float | None, spec: str = ".2f") -> str:
    return "-" if value is None else format(value, spec)


# =============================================================================
# Table builders
# =============================================================================


def create_scores_table(title: str = "Task Priorities") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("#", justify="right", width=4)
    table.add_column("Task", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Due", justify="right")
    table.add_column("Habit", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Complexity", justify="right")
    table.add_column("ML", justify="right")
    return table


def create_experiments_table(title: str = "Experiments") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Active", justify="center")
    table.add_column("Parameters")
    return table


def create_anomalies_table(title: str = "Anomalies") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("When")
    table.add_column("Type", style="magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Expected", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Z", justify="right")
    return table


def create_simple_table(show_header: bool = False) -> Table:
    """Borderless table for key-value displays."""
    return Table(show_header=show_header, box=None)


# =============================================================================
# Structured and error output
# =============================================================================


def output_json(data: Any) -> None:
    """Print data as indented JSON, without Rich markup or wrapping."""
    console.print(
        json.dumps(data, indent=2, default=str),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def output_error(message: str, *, hints: list[str] | None = None) -> None:
    console.print(f"[red]Error:[/red] {message}")
    if hints:
        console.print()
        console.print("[dim]Hints:[/dim]")
        for hint in hints:
            console.print(f"  - {hint}")
