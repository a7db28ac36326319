"""Shared utilities for Cadence CLI commands.

- Logging options collected by the global callback
- Config loading (--config, then $CADENCE_CONFIG, then defaults)
- Engine lifetime around a single command
- YAML task fixtures for the prioritize command
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Literal, TypeVar

import typer
import yaml

from cadence.core.config import CONFIG_ENV_VAR, CadenceConfig
from cadence.core.errors import CadenceError, ConfigurationError
from cadence.core.logging import configure_logging, get_logger
from cadence.core.models import Habit, Task, User
from cadence.engine import CadenceEngine, build_engine
from cadence.storage.repositories import (
    InMemoryHabitRepository,
    InMemoryTaskRepository,
    InMemoryUserRepository,
)
from cadence.utils.time import ensure_aware

from .output import output_error

_logger = get_logger("cli")

T = TypeVar("T")


# =============================================================================
# Global CLI state
# =============================================================================


@dataclass
class CliState:
    """Options set by the global callback, read by every command."""

    config_path: Path | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    log_format: Literal["json", "console"] | None = None
    configured: bool = False


_state = CliState()


def set_config_path(path: Path | None) -> None:
    _state.config_path = path


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_LOG_FORMATS = ("json", "console")


def set_log_level(level: str) -> None:
    """Set the log level.

    Raises:
        typer.BadParameter: If level is not a known level name.
    """
    normalized = level.upper()
    if normalized not in _LOG_LEVELS:
        raise typer.BadParameter(f"must be one of {', '.join(_LOG_LEVELS)}")
    _state.log_level = normalized  # type: ignore[assignment]


def set_log_format(fmt: str) -> None:
    if fmt not in _LOG_FORMATS:
        raise typer.BadParameter(f"must be one of {', '.join(_LOG_FORMATS)}")
    _state.log_format = fmt  # type: ignore[assignment]


def reset_cli_state() -> None:
    """Forget global options (primarily for testing)."""
    global _state
    _state = CliState()


# =============================================================================
# Configuration and logging
# =============================================================================


def load_config() -> CadenceConfig:
    """Load configuration from --config, $CADENCE_CONFIG, or defaults.

    Raises:
        ConfigurationError: If the chosen file is missing or invalid.
    """
    path = _state.config_path
    if path is None and os.environ.get(CONFIG_ENV_VAR):
        path = Path(os.environ[CONFIG_ENV_VAR])
    if path is None:
        return CadenceConfig()
    return CadenceConfig.from_yaml(path)


def configure_cli_logging(config: CadenceConfig) -> None:
    """Configure logging once; CLI flags win over the config file."""
    if _state.configured:
        return
    configure_logging(
        level=_state.log_level or config.logging.level,
        format=_state.log_format or config.logging.format,
        file_path=config.logging.file_path,
    )
    _state.configured = True


# =============================================================================
# Engine lifetime
# =============================================================================


@asynccontextmanager
async def open_engine(**repositories: Any) -> AsyncIterator[CadenceEngine]:
    """Build an engine from the CLI configuration and close it afterwards."""
    config = load_config()
    configure_cli_logging(config)
    engine = build_engine(config, **repositories)
    try:
        yield engine
    finally:
        await engine.close()


def run_command(operation: Callable[[], Awaitable[T]]) -> T:
    """Run an async command body, turning engine errors into exit code 1."""
    try:
        return asyncio.run(operation())
    except ConfigurationError as e:
        output_error(str(e), hints=[f"Check --config or ${CONFIG_ENV_VAR}"])
        raise typer.Exit(1) from None
    except CadenceError as e:
        _logger.debug("cli_command_failed", error=str(e))
        output_error(str(e))
        raise typer.Exit(1) from None


# =============================================================================
# Task fixtures
# =============================================================================


def _parse_datetime(value: Any) -> datetime | None:
    """YAML timestamp, date or ISO string as an aware datetime.

    Bare dates mean midnight; values without an offset are taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    return ensure_aware(datetime.fromisoformat(str(value)))


@dataclass
class TaskFixture:
    tasks: InMemoryTaskRepository
    habits: InMemoryHabitRepository
    users: InMemoryUserRepository


def load_task_fixture(path: Path, user_id: str) -> TaskFixture:
    """Read tasks, habits and users from a YAML fixture.

    Example:
        tasks:
          - id: t1
            title: Write report
            category: work
            due_date: 2025-06-02T17:00:00+00:00
            subtasks: [outline, draft]
        habits:
          - id: h1
            category: work
            frequency: daily

    Entries without user_id belong to user_id. When the fixture lists no
    users, user_id is the only known user.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot load task fixture {path}: {e}") from e

    try:
        tasks = [
            Task(
                id=str(raw["id"]),
                user_id=raw.get("user_id", user_id),
                title=raw.get("title", ""),
                description=raw.get("description"),
                category=raw.get("category"),
                due_date=_parse_datetime(raw.get("due_date")),
                created_at=_parse_datetime(raw.get("created_at")),
                subtasks=list(raw.get("subtasks", [])),
                completed=bool(raw.get("completed", False)),
            )
            for raw in data.get("tasks", [])
        ]
        habits = [
            Habit(
                id=str(raw["id"]),
                user_id=raw.get("user_id", user_id),
                title=raw.get("title", ""),
                category=raw.get("category"),
                frequency=raw.get("frequency", "daily"),
            )
            for raw in data.get("habits", [])
        ]
        users = [User(id=str(raw["id"]), name=raw.get("name", "")) for raw in data.get("users", [])]
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid task fixture {path}: {e}") from e

    return TaskFixture(
        tasks=InMemoryTaskRepository(tasks),
        habits=InMemoryHabitRepository(habits),
        users=InMemoryUserRepository(users or [User(id=user_id)]),
    )
