"""Exception hierarchy for Cadence.

All engine exceptions inherit from CadenceError, enabling callers to catch
broad (CadenceError) or narrow (e.g., ExperimentNotFoundError).

Insufficient data and degenerate statistical input are deliberately NOT
represented here: those paths return None or neutral defaults.
"""

from __future__ import annotations


class CadenceError(Exception):
    """Base exception for all Cadence errors."""


class StorageError(CadenceError):
    """Raised when the persistence layer fails to read or write.

    Adapters wrap driver-specific exceptions into this type. The engine never
    retries it; retry policy belongs to the adapter.
    """


class ConcurrentUpdateError(StorageError):
    """Raised when an optimistic compare-and-swap keeps losing to other writers.

    The weight store retries conflicting read-mutate-write cycles a bounded
    number of times before giving up with this error.
    """


class NotFoundError(CadenceError):
    """Raised when an operation references an entity that does not exist."""


class ExperimentNotFoundError(NotFoundError):
    """Raised when an experiment id does not match any stored experiment."""

    def __init__(self, experiment_id: str) -> None:
        super().__init__(f"Experiment not found: {experiment_id}")
        self.experiment_id = experiment_id


class UserNotFoundError(NotFoundError):
    """Raised when a user id is not known to the user repository."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class ConfigurationError(CadenceError):
    """Raised when a configuration file is missing or fails validation."""
