"""Experiment management commands for the Cadence CLI.

Subcommands:
- `cadence experiment create`: Start an A/B experiment
- `cadence experiment analyze`: Compare treatment against control
- `cadence experiment stop`: Deactivate an experiment
- `cadence experiment list`: Show experiments
"""

from __future__ import annotations

from dataclasses import asdict

import typer

from ..helpers import open_engine, run_command
from ..output import (
    console,
    create_experiments_table,
    create_simple_table,
    format_timestamp,
    output_error,
    output_json,
)

experiment_app = typer.Typer(
    name="experiment",
    help="Run and analyze A/B experiments on learning parameters.",
    no_args_is_help=True,
)


def _parse_parameters(raw: list[str]) -> dict[str, float]:
    """Parse KEY=VALUE pairs into a parameter map."""
    parameters: dict[str, float] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key:
            output_error(f"Invalid parameter '{item}'", hints=["Use KEY=VALUE, e.g. learningRate=0.2"])
            raise typer.Exit(1)
        try:
            parameters[key.strip()] = float(value)
        except ValueError:
            output_error(f"Parameter '{key}' must be numeric, got '{value}'")
            raise typer.Exit(1) from None
    return parameters


@experiment_app.command()
def create(
    name: str = typer.Argument(..., help="Experiment name"),
    param: list[str] = typer.Option(
        [],
        "--param",
        "-p",
        help="Treatment parameter override as KEY=VALUE (repeatable)",
    ),
    days: int = typer.Option(14, "--days", "-d", min=1, help="Duration in days"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Create an active experiment.

    Examples:
        cadence experiment create faster-learning -p learningRate=0.2 --days 21
    """
    parameters = _parse_parameters(param)

    async def _create() -> None:
        async with open_engine() as engine:
            experiment = await engine.create_experiment(name, parameters, days)
        if json_output:
            output_json(experiment.to_dict())
            return
        console.print(f"[green]Created experiment[/green] [cyan]{experiment.id}[/cyan] ({name})")

    run_command(_create)


@experiment_app.command()
def analyze(
    experiment_id: str = typer.Argument(..., help="Experiment ID"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Compare treatment against control for an experiment."""

    async def _analyze() -> None:
        async with open_engine() as engine:
            analysis = await engine.analyze_experiment(experiment_id)

        if json_output:
            output_json(asdict(analysis))
            return

        console.print(f"[bold]{analysis.experiment_name}[/bold] [dim]({analysis.experiment_id})[/dim]")
        console.print(
            f"[dim]{format_timestamp(analysis.start_date)} → "
            f"{format_timestamp(analysis.end_date)}[/dim]\n"
        )

        table = create_simple_table(show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Control", justify="right")
        table.add_column("Treatment", justify="right")
        table.add_column("Change", justify="right")
        table.add_column("t", justify="right")
        table.add_column("p", justify="right")
        table.add_column("d", justify="right")

        for metric in sorted(set(analysis.control_metrics) | set(analysis.treatment_metrics)):
            control = analysis.control_metrics.get(metric)
            treatment = analysis.treatment_metrics.get(metric)
            improvement = analysis.improvements.get(metric)
            stats = analysis.statistics.get(metric)
            p_text = "-"
            if stats is not None:
                color = "green" if stats.is_significant else "dim"
                p_text = f"[{color}]{stats.p_value:.4f}[/{color}]"
            table.add_row(
                metric,
                "-" if control is None else f"{control:.3f}",
                "-" if treatment is None else f"{treatment:.3f}",
                "-" if improvement is None else f"{improvement:+.1f}%",
                "-" if stats is None else f"{stats.t_value:.2f}",
                p_text,
                "-" if stats is None else f"{stats.effect_size:.2f}",
            )
        console.print(table)

    run_command(_analyze)


@experiment_app.command()
def stop(experiment_id: str = typer.Argument(..., help="Experiment ID")) -> None:
    """Deactivate an experiment; users fall back to default parameters."""

    async def _stop() -> None:
        async with open_engine() as engine:
            await engine.experiments.deactivate_experiment(experiment_id)
        console.print(f"[green]Stopped experiment[/green] [cyan]{experiment_id}[/cyan]")

    run_command(_stop)


@experiment_app.command(name="list")
def list_experiments(
    active: bool = typer.Option(False, "--active", "-a", help="Only active experiments"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List experiments, most recently started first."""

    async def _list() -> None:
        async with open_engine() as engine:
            experiments = await engine.experiments.list_experiments(active_only=active)

        if json_output:
            output_json([e.to_dict() for e in experiments])
            return
        if not experiments:
            console.print("[dim]No experiments.[/dim]")
            return

        table = create_experiments_table()
        for experiment in experiments:
            table.add_row(
                experiment.id,
                experiment.name,
                format_timestamp(experiment.start_date),
                format_timestamp(experiment.end_date),
                "[green]yes[/green]" if experiment.is_active else "[dim]no[/dim]",
                ", ".join(f"{k}={v:g}" for k, v in experiment.parameters.items()) or "-",
            )
        console.print(table)

    run_command(_list)
