"""Learning inspection commands for the Cadence CLI.

- `insights`: best hours, days and categories learned for a user
- `similar`: most similar users by learned weights
- `anomalies`: recorded (or freshly detected) anomalies
- `prioritize`: rank a YAML fixture of tasks with the learned weights
"""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path

import typer
from rich.panel import Panel

from ..helpers import load_task_fixture, open_engine, run_command
from ..output import (
    console,
    create_anomalies_table,
    create_scores_table,
    create_simple_table,
    format_duration,
    format_optional,
    format_timestamp,
    output_json,
)

# =============================================================================
# insights command
# =============================================================================


def insights(
    user_id: str = typer.Argument(..., help="User to inspect"),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show what the engine has learned about a user.

    Examples:
        cadence insights user-1
        cadence insights user-1 --json
    """

    async def _insights() -> None:
        async with open_engine() as engine:
            report = await engine.get_learning_insights(user_id)

        if json_output:
            output_json(asdict(report))
            return

        console.print(Panel(f"[bold]{user_id}[/bold]", title="Learning Insights", border_style="cyan"))

        table = create_simple_table()
        table.add_column("Field", style="dim", width=22)
        table.add_column("Value", style="bold")
        table.add_row("Best hours", ", ".join(report.best_hours) or "-")
        table.add_row("Best days", ", ".join(report.best_days) or "-")
        table.add_row("Best categories", ", ".join(report.best_categories) or "-")
        perf = report.performance
        table.add_row("Samples (window)", str(perf.sample_count))
        table.add_row("Prediction accuracy", format_optional(perf.prediction_accuracy, ".1%"))
        table.add_row("Time estimate error", format_optional(perf.time_estimation_error, ".1%"))
        console.print(table)

        if perf.category_metrics:
            console.print("\n[bold]Categories[/bold]")
            for name, stats in perf.category_metrics.items():
                console.print(
                    f"  {name}: {stats.successful_tasks}/{stats.total_tasks} "
                    f"({stats.success_rate:.0%}), avg score {stats.average_score:.2f}"
                )

        collab = report.collaborative
        if collab.is_empty:
            console.print("\n[dim]No similar users yet.[/dim]")
            return
        console.print("\n[bold]Similar users suggest[/bold]")
        for category, rate in collab.category_recommendations.items():
            seconds = collab.time_recommendations.get(category)
            console.print(f"  → {category}: success {rate:.0%}, time {format_duration(seconds)}")

    run_command(_insights)


# =============================================================================
# similar command
# =============================================================================


def similar(
    user_id: str = typer.Argument(..., help="User to compare"),
    limit: int = typer.Option(5, "--limit", "-n", help="Maximum number of users to show"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List the users whose learned weights correlate most with USER_ID."""

    async def _similar() -> None:
        async with open_engine() as engine:
            users = await engine.analytics.get_similar_users(user_id, limit=limit)

        if json_output:
            output_json([asdict(u) for u in users])
            return
        if not users:
            console.print(f"[yellow]No similarity data for {user_id}.[/yellow]")
            return

        table = create_simple_table(show_header=True)
        table.add_column("User", style="cyan")
        table.add_column("Similarity", justify="right")
        for user in users:
            table.add_row(user.user_id, f"{user.similarity:+.3f}")
        console.print(table)

    run_command(_similar)


# =============================================================================
# anomalies command
# =============================================================================


def anomalies(
    user_id: str = typer.Argument(..., help="User to inspect"),
    detect: bool = typer.Option(
        False,
        "--detect",
        "-d",
        help="Run anomaly detection before listing",
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of anomalies"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show anomalies recorded for a user, newest first."""

    async def _anomalies() -> None:
        async with open_engine() as engine:
            if detect:
                await engine.detect_anomalies(user_id)
            records = await engine.experiments.get_anomalies(user_id, limit=limit)

        if json_output:
            output_json([record.to_dict() for record in records])
            return
        if not records:
            console.print(f"[green]No anomalies recorded for {user_id}.[/green]")
            return

        table = create_anomalies_table()
        for record in records:
            table.add_row(
                format_timestamp(record.timestamp),
                record.anomaly_type.value,
                record.metric,
                f"{record.expected_value:.3f}",
                f"{record.actual_value:.3f}",
                f"{record.z_score:.2f}",
            )
        console.print(table)

    run_command(_anomalies)


# =============================================================================
# prioritize command
# =============================================================================


def prioritize(
    user_id: str = typer.Argument(..., help="User whose tasks are ranked"),
    tasks_file: Path = typer.Option(
        ...,
        "--tasks",
        "-t",
        help="YAML file with tasks, habits and optionally users",
        exists=True,
        dir_okay=False,
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Rank the incomplete tasks in a YAML fixture for USER_ID.

    Examples:
        cadence prioritize user-1 --tasks today.yaml
    """

    async def _prioritize() -> None:
        fixture = load_task_fixture(tasks_file, user_id)
        async with open_engine(
            tasks=fixture.tasks, habits=fixture.habits, users=fixture.users
        ) as engine:
            scores = await engine.prioritize_tasks(user_id)

        if json_output:
            output_json([asdict(score) for score in scores])
            return
        if not scores:
            console.print(f"[yellow]No open tasks for {user_id}.[/yellow]")
            return

        table = create_scores_table()
        for rank, score in enumerate(scores, start=1):
            task = fixture.tasks.tasks[score.task_id]
            f = score.factors
            table.add_row(
                str(rank),
                task.title or task.id,
                f"{score.score:.3f}",
                f"{f['due_date']:.2f}",
                f"{f['habit_alignment']:.2f}",
                f"{f['time_of_day']:.2f}",
                f"{f['complexity']:.2f}",
                f"{f['ml_multiplier']:.2f}",
            )
        console.print(table)

    run_command(_prioritize)
