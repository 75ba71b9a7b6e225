"""Shared fixtures: an isolated configuration and SQLite database per test."""

from pathlib import Path

import pytest

from backend.src.services import config as config_module
from backend.src.services.database import DatabaseService


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path: Path):
    """Point configuration at a temporary database and clear the cache."""
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "test.db"))
    monkeypatch.delenv("JWT_SECRET_KEY", raising=False)
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.delenv("FIRECRAWL_API_KEY", raising=False)
    monkeypatch.delenv("MISTRAL_API_KEY", raising=False)
    config_module.reload_config()
    yield
    config_module.get_config.cache_clear()


@pytest.fixture
def db(tmp_path: Path) -> DatabaseService:
    """Initialized database service backed by a temporary file."""
    service = DatabaseService(tmp_path / "chat.db")
    service.initialize()
    return service
