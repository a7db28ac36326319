"""Pytest fixtures for Cadence tests."""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest
import structlog

from cadence.core.config import CadenceConfig
from cadence.engine import CadenceEngine
from cadence.storage.memory import InMemoryDocumentStore
from tests.helpers import FakeClock, make_engine


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging and CLI state before and after each test.

    This ensures test isolation for logging configuration.
    """
    from cadence.cli import helpers as cli_helpers

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_cli_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def config() -> CadenceConfig:
    return CadenceConfig()


@pytest.fixture
def engine(store: InMemoryDocumentStore, clock: FakeClock) -> CadenceEngine:
    """Engine with two known users and no tasks."""
    return make_engine(store=store, clock=clock, users=["user-1", "user-2"])
