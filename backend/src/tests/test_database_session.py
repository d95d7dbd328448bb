"""
Tests for engine construction and schema creation.
"""

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from src.database import session as db_session_module
from src.database.session import build_engine, get_database_url, init_db


class TestDatabaseUrl:
    """DATABASE_URL handling."""

    def test_missing_url_raises(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(ValueError):
            get_database_url()

    def test_heroku_style_scheme_rewritten(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db:5432/app")

        assert get_database_url() == "postgresql://u:p@db:5432/app"

    def test_postgresql_scheme_untouched(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/app")

        assert get_database_url() == "postgresql://u:p@db:5432/app"


class TestBuildEngine:
    """Dialect-specific engine options."""

    def test_sqlite_engine(self):
        engine = build_engine("sqlite:///:memory:")

        assert engine.dialect.name == "sqlite"
        engine.dispose()


class TestInitDb:
    """Schema bootstrap."""

    def test_creates_all_onboarding_tables(self):
        engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        init_db(engine)

        tables = set(inspect(engine).get_table_names())
        assert {
            "organizations",
            "accounts",
            "invitation_codes",
            "metadata_sync_tasks",
            "audit_logs",
        } <= tables

    def test_session_factory_is_cached(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
        monkeypatch.setattr(db_session_module, "_engine", None)
        monkeypatch.setattr(db_session_module, "_session_factory", None)

        first = db_session_module.get_session_factory()
        second = db_session_module.get_session_factory()

        assert first is second
