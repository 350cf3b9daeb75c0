"""Pytest configuration for trashkit."""

import pytest
import pytest_asyncio

from trashkit.app import TrashKit
from trashkit.audit_trail.storage import Base as AuditBase
from trashkit.config import TrashKitConfig
from trashkit.database import Database
from trashkit.platform.models import Base as PlatformBase
from trashkit.platform.registry import build_registry


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Add custom markers
    config.addinivalue_line("markers", "scenario: end-to-end lifecycle scenario")


# Configure pytest to ignore certain warnings
pytest.mark.filterwarnings("ignore::pytest.PytestCollectionWarning")


@pytest.fixture
def database_url(tmp_path):
    """File-backed SQLite URL; concurrent sessions need a shared file."""
    return f"sqlite+aiosqlite:///{tmp_path / 'trashkit.db'}"


@pytest_asyncio.fixture
async def database(database_url):
    """Database with platform and activity log tables created."""
    db = Database(database_url)
    await db.create_all(PlatformBase.metadata, AuditBase.metadata)
    yield db
    await db.dispose()


@pytest.fixture
def registry():
    """Production module registry."""
    return build_registry()


@pytest_asyncio.fixture
async def kit(database_url, database):
    """Fully wired TrashKit sharing the test database."""
    config = TrashKitConfig(database_url=database_url, environment="test")
    trashkit = TrashKit(config, database=database)
    await trashkit.init()
    yield trashkit
    await trashkit.close()
