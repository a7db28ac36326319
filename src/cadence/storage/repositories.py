"""Repositories for data the engine reads but does not own.

Tasks, habits and users live in the host application's database. The engine
depends only on these protocols; the in-memory implementations back tests,
the CLI's fixture-driven commands and embedding applications without a store.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from cadence.core.models import Habit, Task, User
from cadence.storage.base import WEIGHTS_COLLECTION, DocumentStore


class TaskRepository(Protocol):
    """Read access to a user's tasks."""

    async def find_incomplete(self, user_id: str) -> list[Task]: ...

    async def find_by_id(self, task_id: str) -> Task | None: ...


class HabitRepository(Protocol):
    """Read access to a user's habits."""

    async def find_by_user(self, user_id: str) -> list[Habit]: ...


class UserRepository(Protocol):
    """Enumeration of known users, needed for similarity computation."""

    async def find_all(self) -> list[User]: ...

    async def find_by_id(self, user_id: str) -> User | None: ...


class InMemoryTaskRepository:
    """Dict-backed TaskRepository preserving insertion order."""

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self.tasks: dict[str, Task] = {}
        for task in tasks:
            self.add(task)

    def add(self, task: Task) -> None:
        self.tasks[task.id] = task

    async def find_incomplete(self, user_id: str) -> list[Task]:
        return [t for t in self.tasks.values() if t.user_id == user_id and not t.completed]

    async def find_by_id(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)


class InMemoryHabitRepository:
    """List-backed HabitRepository."""

    def __init__(self, habits: Iterable[Habit] = ()) -> None:
        self.habits: list[Habit] = list(habits)

    def add(self, habit: Habit) -> None:
        self.habits.append(habit)

    async def find_by_user(self, user_id: str) -> list[Habit]:
        return [h for h in self.habits if h.user_id == user_id]


class InMemoryUserRepository:
    """Dict-backed UserRepository preserving insertion order."""

    def __init__(self, users: Iterable[User] = ()) -> None:
        self.users: dict[str, User] = {}
        for user in users:
            self.add(user)

    def add(self, user: User) -> None:
        self.users[user.id] = user

    async def find_all(self) -> list[User]:
        return list(self.users.values())

    async def find_by_id(self, user_id: str) -> User | None:
        return self.users.get(user_id)


class WeightsUserRepository:
    """UserRepository over the users that already have learned weights.

    Used where the host's user directory is not reachable (the CLI); every
    user the engine has ever learned about appears exactly once.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def find_all(self) -> list[User]:
        docs = await self._store.find(WEIGHTS_COLLECTION, sort=[("user_id", 1)])
        return [User(id=doc["user_id"]) for doc in docs]

    async def find_by_id(self, user_id: str) -> User | None:
        doc = await self._store.find_one(WEIGHTS_COLLECTION, {"user_id": user_id})
        return User(id=user_id) if doc else None
