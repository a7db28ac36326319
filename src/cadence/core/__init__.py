"""Core domain models, configuration, logging and errors."""

from cadence.core.config import CadenceConfig
from cadence.core.errors import (
    CadenceError,
    ConcurrentUpdateError,
    ConfigurationError,
    ExperimentNotFoundError,
    NotFoundError,
    StorageError,
    UserNotFoundError,
)
from cadence.core.models import (
    AnomalyRecord,
    AnomalyType,
    ExperimentConfig,
    Habit,
    PerformanceMetric,
    Task,
    TaskPriorityScore,
    User,
    UserSimilarity,
    UserWeights,
)

__all__ = [
    "AnomalyRecord",
    "AnomalyType",
    "CadenceConfig",
    "CadenceError",
    "ConcurrentUpdateError",
    "ConfigurationError",
    "ExperimentConfig",
    "ExperimentNotFoundError",
    "Habit",
    "NotFoundError",
    "PerformanceMetric",
    "StorageError",
    "Task",
    "TaskPriorityScore",
    "User",
    "UserNotFoundError",
    "UserSimilarity",
    "UserWeights",
]
