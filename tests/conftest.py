"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for gcp_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from gcp_mock import FakeProviderClient  # noqa: E402

from graphctl.drivers import build_drivers  # noqa: E402
from graphctl.engine import Engine  # noqa: E402
from graphctl.state import InMemoryStateStore  # noqa: E402


@pytest.fixture
def client() -> FakeProviderClient:
    return FakeProviderClient()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def engine(client: FakeProviderClient, store: InMemoryStateStore) -> Engine:
    """Engine over the fake provider with instant retries."""
    return Engine(
        store,
        build_drivers(client),
        project=client.project,
        max_concurrency=4,
        max_attempts=3,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
        operation_timeout_seconds=5,
    )
