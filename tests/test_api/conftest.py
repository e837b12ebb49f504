"""Shared fixtures for API tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from mirror_indexer.api.app import create_app
from mirror_indexer.indexer.registry import IndexerRegistry
from mirror_indexer.storage.database import Database


def _instance_status(instance_id: str, kind: str = "discourse", running: bool = True) -> dict:
    """Helper to create one entry of IndexerRegistry.status()."""
    return {
        "instance_id": instance_id,
        "kind": kind,
        "running": running,
        "outstanding": 0,
        "pending": 0,
    }


@pytest.fixture
def mock_registry():
    """Mock IndexerRegistry with two running instances."""
    registry = MagicMock(spec=IndexerRegistry)
    registry.enqueue = AsyncMock(return_value=True)
    registry.status.return_value = {
        "research": _instance_status("research"),
        "pm": _instance_status("pm", kind="github"),
    }
    return registry


@pytest.fixture
def mock_database():
    """Mock Database that reports healthy."""
    db = AsyncMock(spec=Database)
    db.health_check.return_value = True
    return db


@pytest.fixture
def client(mock_registry, mock_database):
    """Test client wired to the mocked registry and database."""
    app = create_app(registry=mock_registry, database=mock_database)
    return TestClient(app)
