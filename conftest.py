"""
Pytest configuration and shared fixtures.

Settings are pointed at a throwaway data directory before any app import;
each test then gets its own stores rooted in tmp_path.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="chatapp-test-"))

# Clear settings cache before any app imports to ensure test env vars are used
from chatapp.config import get_settings
get_settings.cache_clear()

from chatapp.storage import Stores


class StepClock:
    """Deterministic clock: every call advances by `step`."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def clock():
    return StepClock(datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def stores(tmp_path, clock):
    """Fresh stores in a temporary data directory."""
    return Stores(tmp_path, clock=clock)


@pytest.fixture
def client(stores):
    """Test client whose handlers use the temporary stores."""
    from fastapi.testclient import TestClient

    from chatapp.main import app
    from chatapp.storage import get_stores

    app.dependency_overrides[get_stores] = lambda: stores
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
