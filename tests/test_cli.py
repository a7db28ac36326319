"""Tests for Cadence CLI commands."""

import asyncio
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from cadence import __version__
from cadence.cli import app
from cadence.learning.weights import WeightStore, apply_multiplier_step
from cadence.storage.sqlite import SQLiteDocumentStore

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "cadence.db"


@pytest.fixture
def config_file(tmp_path: Path, db_path: Path) -> Path:
    """Engine config pointing at a throwaway SQLite database."""
    path = tmp_path / "cadence.yaml"
    path.write_text(
        f"storage:\n  backend: sqlite\n  path: {db_path}\nlogging:\n  level: ERROR\n"
    )
    return path


@pytest.fixture
def tasks_file(tmp_path: Path) -> Path:
    path = tmp_path / "tasks.yaml"
    path.write_text(
        """
tasks:
  - id: later
    title: Tidy inbox
  - id: urgent
    title: File taxes
    due_date: "2000-01-01T00:00:00+00:00"
  - id: done
    title: Already done
    completed: true
habits:
  - id: h1
    category: work
    frequency: daily
"""
    )
    return path


def _invoke(config_file: Path, *args: str):
    return runner.invoke(app, ["--config", str(config_file), "--log-level", "ERROR", *args])


def _seed_weights(db_path: Path, user_id: str = "user-1") -> None:
    async def _seed() -> None:
        weights = WeightStore(SQLiteDocumentStore(db_path))
        await weights.update_weights(
            user_id, lambda w: apply_multiplier_step(w, 9, 2, "work", 0.5)
        )

    asyncio.run(_seed())


class TestGlobalOptions:
    """Tests for the app callback options."""

    def test_version_shows_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"Cadence v{__version__}" in result.stdout

    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "experiment" in result.output

    def test_invalid_log_level(self) -> None:
        result = runner.invoke(app, ["--log-level", "LOUD", "similar", "user-1"])
        assert result.exit_code == 2

    def test_invalid_config_file(self, tmp_path: Path) -> None:
        """Test a config that fails validation exits with code 1."""
        bad = tmp_path / "bad.yaml"
        bad.write_text("storage:\n  backend: postgres\n")
        result = _invoke(bad, "similar", "user-1")
        assert result.exit_code == 1
        assert "Invalid configuration" in result.stdout


class TestExperimentCommands:
    """Tests for the experiment sub-app."""

    def test_create_list_stop(self, config_file: Path) -> None:
        created = _invoke(
            config_file, "experiment", "create", "faster", "-p", "learningRate=0.2",
            "--days", "7", "--json",
        )
        assert created.exit_code == 0, created.output
        experiment = json.loads(created.stdout)
        assert experiment["name"] == "faster"
        assert experiment["parameters"] == {"learningRate": 0.2}
        assert experiment["is_active"] is True

        listed = _invoke(config_file, "experiment", "list", "--json")
        assert [e["id"] for e in json.loads(listed.stdout)] == [experiment["id"]]

        stopped = _invoke(config_file, "experiment", "stop", experiment["id"])
        assert stopped.exit_code == 0
        assert "Stopped experiment" in stopped.stdout

        active = _invoke(config_file, "experiment", "list", "--active", "--json")
        assert json.loads(active.stdout) == []

    def test_list_table(self, config_file: Path) -> None:
        _invoke(config_file, "experiment", "create", "table-me", "-p", "learningRate=0.3")
        result = _invoke(config_file, "experiment", "list")
        assert result.exit_code == 0
        assert "table-me" in result.stdout

    def test_analyze_empty_experiment(self, config_file: Path) -> None:
        created = _invoke(config_file, "experiment", "create", "quiet", "--json")
        experiment_id = json.loads(created.stdout)["id"]

        result = _invoke(config_file, "experiment", "analyze", experiment_id, "--json")
        assert result.exit_code == 0
        analysis = json.loads(result.stdout)
        assert analysis["experiment_id"] == experiment_id
        assert analysis["statistics"] == {}

    def test_analyze_unknown_experiment(self, config_file: Path) -> None:
        result = _invoke(config_file, "experiment", "analyze", "missing")
        assert result.exit_code == 1
        assert "Experiment not found: missing" in result.stdout

    def test_invalid_parameter(self, config_file: Path) -> None:
        result = _invoke(config_file, "experiment", "create", "bad", "-p", "learningRate")
        assert result.exit_code == 1
        assert "Invalid parameter" in result.stdout

    def test_non_numeric_parameter(self, config_file: Path) -> None:
        result = _invoke(config_file, "experiment", "create", "bad", "-p", "learningRate=fast")
        assert result.exit_code == 1
        assert "must be numeric" in result.stdout


class TestLearningCommands:
    """Tests for insights, similar, anomalies and prioritize."""

    def test_insights_unknown_user(self, config_file: Path) -> None:
        result = _invoke(config_file, "insights", "nobody")
        assert result.exit_code == 1
        assert "User not found: nobody" in result.stdout

    def test_insights_json(self, config_file: Path, db_path: Path) -> None:
        _seed_weights(db_path)

        result = _invoke(config_file, "insights", "user-1", "--json")

        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["user_id"] == "user-1"
        assert report["best_hours"][0] == "9:00"
        assert report["best_days"][0] == "Monday"
        assert report["best_categories"] == ["work"]
        assert report["performance"]["sample_count"] == 0

    def test_insights_table(self, config_file: Path, db_path: Path) -> None:
        _seed_weights(db_path)
        result = _invoke(config_file, "insights", "user-1")
        assert result.exit_code == 0
        assert "Best hours" in result.stdout
        assert "No similar users yet" in result.stdout

    def test_similar_without_data(self, config_file: Path) -> None:
        result = _invoke(config_file, "similar", "user-1", "--json")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_anomalies_detect_without_history(self, config_file: Path, db_path: Path) -> None:
        _seed_weights(db_path)
        result = _invoke(config_file, "anomalies", "user-1", "--detect")
        assert result.exit_code == 0
        assert "No anomalies recorded" in result.stdout

    def test_prioritize_ranks_overdue_first(
        self, config_file: Path, tasks_file: Path
    ) -> None:
        result = _invoke(config_file, "prioritize", "user-1", "--tasks", str(tasks_file), "--json")

        assert result.exit_code == 0, result.output
        scores = json.loads(result.stdout)
        assert [s["task_id"] for s in scores] == ["urgent", "later"]
        assert scores[0]["factors"]["due_date"] == 1.0
        assert scores[1]["factors"]["due_date"] == 0.5

    def test_prioritize_dates_without_offset(self, config_file: Path, tmp_path: Path) -> None:
        """Test bare YAML dates and offset-less timestamps are read as UTC."""
        fixture = tmp_path / "dates.yaml"
        fixture.write_text(
            "tasks:\n"
            "  - id: past\n"
            "    due_date: 2000-01-01\n"
            "  - id: naive\n"
            "    due_date: 2000-01-02T10:00:00\n"
            "  - id: future\n"
            "    due_date: 2999-06-02\n"
            "    created_at: '2000-01-01T08:00:00'\n"
        )
        result = _invoke(config_file, "prioritize", "user-1", "--tasks", str(fixture), "--json")

        assert result.exit_code == 0, result.output
        scores = {s["task_id"]: s for s in json.loads(result.stdout)}
        assert scores["past"]["factors"]["due_date"] == 1.0
        assert scores["naive"]["factors"]["due_date"] == 1.0
        assert scores["future"]["factors"]["due_date"] == pytest.approx(0.1)

    def test_prioritize_table(self, config_file: Path, tasks_file: Path) -> None:
        result = _invoke(config_file, "prioritize", "user-1", "--tasks", str(tasks_file))
        assert result.exit_code == 0
        assert "File taxes" in result.stdout

    def test_prioritize_bad_fixture(self, config_file: Path, tmp_path: Path) -> None:
        bad = tmp_path / "bad-tasks.yaml"
        bad.write_text("tasks:\n  - title: no id\n")
        result = _invoke(config_file, "prioritize", "user-1", "--tasks", str(bad))
        assert result.exit_code == 1
        assert "Invalid task fixture" in result.stdout
