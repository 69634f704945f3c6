"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file under tmp_path, so tests never share
state and can run in any order.
"""

import pytest
from fastapi.testclient import TestClient

from chatstore.config import Settings, get_settings
from chatstore.ids import TimeUuidGenerator
from chatstore.main import create_app
from chatstore.storage import Database

# Make sure nothing cached from an earlier import leaks into tests
get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a fresh SQLite database."""
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'chatstore-test.db'}",
        LOG_LEVEL="WARNING",
        DEFAULT_WRITE_CONSISTENCY="ONE",
        DEFAULT_READ_CONSISTENCY="ONE",
    )


@pytest.fixture
def db(settings):
    """Connected database handle, closed after the test."""
    database = Database(settings.DATABASE_URL, replication_factor=settings.REPLICATION_FACTOR)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def generator() -> TimeUuidGenerator:
    return TimeUuidGenerator()


@pytest.fixture
def client(settings):
    """Test client with the lifespan running (database connected)."""
    with TestClient(create_app(settings)) as test_client:
        yield test_client
