"""
Pytest configuration and shared fixtures.

Environment variables may be loaded from .env.test via Makefile; the defaults
below let `pytest` run on its own. Each test gets its own SQLite file.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from minitwt.config import get_settings
get_settings.cache_clear()

from minitwt.main import app


@pytest.fixture(scope="function")
def client(tmp_path, monkeypatch):
    """Create test client with a fresh database for each test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'minitwt.db'}")
    get_settings.cache_clear()

    with TestClient(app) as test_client:
        yield test_client

    get_settings.cache_clear()
