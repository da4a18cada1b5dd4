"""Shared fixtures for the contact reconciliation tests."""

import os

import pytest

# Set before the app modules read their settings.
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "text")

from db_setup import init_db  # noqa: E402
from helpers import read_contacts  # noqa: E402
from settings import get_settings  # noqa: E402


@pytest.fixture
def database_path(tmp_path, monkeypatch):
    path = str(tmp_path / "contacts.db")
    monkeypatch.setenv("DATABASE_PATH", path)
    monkeypatch.setenv("TRANSACTION_RETRY_BACKOFF_SECONDS", "0")
    get_settings.cache_clear()
    init_db(path)
    yield path
    get_settings.cache_clear()


@pytest.fixture
def contacts(database_path):
    """Callable returning every stored row, ordered by id."""
    return lambda: read_contacts(database_path)
