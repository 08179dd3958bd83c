"""
Unit Tests for middleware and database helpers
"""
import logging

import pytest
from sqlalchemy.pool import NullPool

from app.core import database
from app.core.middleware import project_id_from_path, status_log_level


class TestMiddlewareHelpers:
    """Tests for request context extraction"""

    def test_project_id_from_path(self):
        assert project_id_from_path("/api/v1/projects/abc-123/urls") == "abc-123"
        assert project_id_from_path("/api/v1/projects/") is None
        assert project_id_from_path("/api/v1/generate") is None

    def test_status_log_level(self):
        assert status_log_level(200) == logging.INFO
        assert status_log_level(404) == logging.WARNING
        assert status_log_level(503) == logging.ERROR


class TestDatabaseHelpers:
    """Tests for engine configuration"""

    @pytest.mark.parametrize("url", [
        "postgres://user:pw@db:5432/buildora",
        "postgresql://user:pw@db:5432/buildora",
    ])
    def test_postgres_url_uses_asyncpg(self, monkeypatch, url):
        monkeypatch.setattr(database.settings, "DATABASE_URL", url)
        assert database.get_database_url() == "postgresql+asyncpg://user:pw@db:5432/buildora"

    def test_sqlite_url_unchanged(self, monkeypatch):
        monkeypatch.setattr(database.settings, "DATABASE_URL", "sqlite+aiosqlite:///./test.db")
        assert database.get_database_url() == "sqlite+aiosqlite:///./test.db"

    def test_sqlite_skips_pooling(self):
        options = database.engine_options("sqlite+aiosqlite:///./test.db")
        assert options["poolclass"] is NullPool
        assert options["connect_args"] == {"check_same_thread": False}

    def test_production_postgres_is_pooled(self, monkeypatch):
        monkeypatch.setattr(database.settings, "ENVIRONMENT", "production")
        monkeypatch.setattr(database.settings, "DEBUG", False)

        options = database.engine_options("postgresql+asyncpg://db/buildora")

        assert options["pool_pre_ping"] is True
        assert options["pool_size"] == database.settings.DB_POOL_SIZE
        assert "poolclass" not in options
