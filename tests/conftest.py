"""Test fixtures shared by all tests."""

from collections.abc import Generator

import pytest

from model_operator.store import InMemoryStore
from model_operator.task import TaskService, task_service_context

from .fakes import FakeRegistryClient


@pytest.fixture(name="task_service", autouse=True)
def task_service_fixture() -> Generator[TaskService, None, None]:
    """Create a task service for each test."""
    with task_service_context() as service:
        yield service


@pytest.fixture(name="store")
def store_fixture() -> InMemoryStore:
    """Create an in-memory store for testing."""
    return InMemoryStore()


@pytest.fixture(name="registry")
def registry_fixture() -> FakeRegistryClient:
    """Create a fake model registry client."""
    return FakeRegistryClient()
