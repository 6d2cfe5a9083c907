"""
Tests for database session helpers.
"""

import pytest

from app.config import settings
from app.db.session import _engine_options


class TestEngineOptions:
    """Pool options per backend."""

    @pytest.mark.parametrize(
        "url", ["sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:////tmp/chat-core.db"]
    )
    def test_sqlite_keeps_driver_defaults(self, url):
        """SQLite engines get no pool sizing."""
        assert set(_engine_options(url)) == {"echo"}

    def test_postgres_gets_pool_settings(self):
        """PostgreSQL engines are sized from settings."""
        options = _engine_options("postgresql+asyncpg://chat:chat@db:5432/chat")

        assert options["pool_size"] == settings.database_pool_size
        assert options["max_overflow"] == settings.database_max_overflow
        assert options["pool_timeout"] == settings.database_pool_timeout
        assert options["pool_recycle"] == settings.database_pool_recycle
