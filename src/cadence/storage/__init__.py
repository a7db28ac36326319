"""Persistence for the engine's own state and the repositories it reads."""

from cadence.core.config import StorageConfig
from cadence.storage.base import (
    ANOMALIES_COLLECTION,
    EXPERIMENTS_COLLECTION,
    METRICS_COLLECTION,
    SIMILARITIES_COLLECTION,
    WEIGHTS_COLLECTION,
    DocumentStore,
)
from cadence.storage.memory import InMemoryDocumentStore
from cadence.storage.repositories import (
    HabitRepository,
    InMemoryHabitRepository,
    InMemoryTaskRepository,
    InMemoryUserRepository,
    TaskRepository,
    UserRepository,
    WeightsUserRepository,
)
from cadence.storage.sqlite import SQLiteDocumentStore


def create_document_store(config: StorageConfig) -> DocumentStore:
    """Create the document store selected by configuration."""
    if config.backend == "memory":
        return InMemoryDocumentStore()
    return SQLiteDocumentStore(config.resolved_path())


__all__ = [
    "ANOMALIES_COLLECTION",
    "DocumentStore",
    "EXPERIMENTS_COLLECTION",
    "HabitRepository",
    "InMemoryDocumentStore",
    "InMemoryHabitRepository",
    "InMemoryTaskRepository",
    "InMemoryUserRepository",
    "METRICS_COLLECTION",
    "SIMILARITIES_COLLECTION",
    "SQLiteDocumentStore",
    "TaskRepository",
    "UserRepository",
    "WEIGHTS_COLLECTION",
    "WeightsUserRepository",
    "create_document_store",
]
