"""Pytest configuration and fixtures."""

import os
import tempfile
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from novelflow.db.database import close_database, init_database
from novelflow.main import app


@pytest.fixture
def db_path():
    """Path of a fresh, empty database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name

    yield path

    # WAL mode leaves sidecar files next to the database
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture(autouse=True)
async def setup_test_db(db_path):
    """Set up a test database for each test."""
    await init_database(db_path)

    yield

    await close_database()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
