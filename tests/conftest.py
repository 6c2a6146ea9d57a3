"""Root-level pytest fixtures for all tests.

Provides:
- An in-memory gateway (see tests/helpers/fakes.py)
- A process-local credential store
- A fixed clock for deterministic live-turn timestamps
"""

from datetime import datetime, timezone

import pytest

from src.errors import NetworkError
from src.services.credential_store import MemoryCredentialStore
from tests.helpers import FakeGateway


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a running backend"
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def fixed_clock():
    """Clock returning a fixed instant."""
    instant = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
    return lambda: instant


@pytest.fixture
def network_error() -> NetworkError:
    return NetworkError("connection refused")
