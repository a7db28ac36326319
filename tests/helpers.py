"""Shared test helpers for Cadence tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from cadence.core.config import CadenceConfig
from cadence.core.models import Habit, Task, User
from cadence.engine import CadenceEngine, build_engine
from cadence.storage.memory import InMemoryDocumentStore
from cadence.storage.repositories import (
    InMemoryHabitRepository,
    InMemoryTaskRepository,
    InMemoryUserRepository,
)

# Monday 2025-06-02 09:00 UTC
NOW = datetime(2025, 6, 2, 9, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


def make_task(
    task_id: str = "task-1",
    user_id: str | None = "user-1",
    **overrides: Any,
) -> Task:
    """Create a Task with test defaults."""
    return Task(id=task_id, user_id=user_id, title=overrides.pop("title", task_id), **overrides)


def make_engine(
    *,
    config: CadenceConfig | None = None,
    clock: FakeClock | None = None,
    tasks: list[Task] | None = None,
    habits: list[Habit] | None = None,
    users: list[str] | None = None,
    store: InMemoryDocumentStore | None = None,
) -> CadenceEngine:
    """Engine over in-memory storage and repositories."""
    return build_engine(
        config or CadenceConfig(),
        store=store or InMemoryDocumentStore(),
        tasks=InMemoryTaskRepository(tasks or []),
        habits=InMemoryHabitRepository(habits or []),
        users=InMemoryUserRepository(User(id=u) for u in (users or ["user-1"])),
        clock=clock or FakeClock(),
    )
