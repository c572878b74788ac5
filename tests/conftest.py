"""
Pytest configuration and shared fixtures.

Provides a deterministic clock, a temporary task store and an HTTP
test client for the sync service.
"""

import pytest
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator
import tempfile

from fastapi.testclient import TestClient

from src.api.app import create_app
from src.storage.clock import ManualClock
from src.storage.task_store import TaskStore
from src.sync.changes import ChangeAction, InboundChange, TaskData
from src.sync.engine import ReconciliationEngine


# ============================================================================
# Clock Fixtures
# ============================================================================

@pytest.fixture
def start_time() -> datetime:
    """Instant at which the test clock starts."""
    return datetime(2026, 1, 20, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(start_time: datetime) -> ManualClock:
    """Create a deterministic clock."""
    return ManualClock(start_time)


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as directory:
        yield Path(directory) / "tasks.db"


@pytest.fixture
def store(temp_db_path: Path, clock: ManualClock) -> TaskStore:
    """Create a fresh TaskStore with temp database."""
    return TaskStore(temp_db_path, clock=clock)


@pytest.fixture
def engine(store: TaskStore) -> ReconciliationEngine:
    """Create a reconciliation engine over the test store."""
    return ReconciliationEngine(store)


# ============================================================================
# Change Fixtures
# ============================================================================

@pytest.fixture
def create_change() -> InboundChange:
    """A client-side create, as sent after working offline."""
    return InboundChange(
        action=ChangeAction.CREATE,
        local_id=1,
        data=TaskData(
            title="Buy milk",
            description="2% milk, 1 gal",
            completed=False,
            updated_at="2026-01-20T09:00:00.000Z",
        ),
    )


# ============================================================================
# HTTP Fixtures
# ============================================================================

@pytest.fixture
def client(store: TaskStore) -> Generator[TestClient, None, None]:
    """HTTP client for an app backed by the test store."""
    with TestClient(create_app(store)) as test_client:
        yield test_client


@pytest.fixture
def mock_env(monkeypatch):
    """Set a complete, valid environment."""
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("DATABASE_PATH", "/tmp/test-tasks.db")
    monkeypatch.setenv("CORS_ENABLED", "true")
    monkeypatch.setenv("CORS_ORIGIN", "http://localhost:5173, https://app.test")
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("LOG_LEVEL", "debug")
