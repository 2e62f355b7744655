"""Pytest configuration and fixtures."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from klyro_pipeline.storage.database import DatabaseManager
from klyro_pipeline.storage.store import RecordStore


@pytest.fixture
async def db_manager(tmp_path: Path) -> AsyncIterator[DatabaseManager]:
    """A file-backed SQLite database with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'klyro.db'}")
    await manager.init_schema()
    yield manager
    await manager.dispose()


@pytest.fixture
def store(db_manager: DatabaseManager) -> RecordStore:
    return RecordStore(db_manager.session)


@pytest.fixture
def wallet_a() -> str:
    return "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"


@pytest.fixture
def wallet_b() -> str:
    return "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
