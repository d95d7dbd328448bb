"""
Database engine and session management.

Sessions are created with autoflush=False; services flush explicitly.
Every connection gets bounded waits: a pool checkout timeout and, on
PostgreSQL, a server-side statement_timeout.
"""

import logging
import os
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from src.config.onboarding import DB_POOL_TIMEOUT_SECONDS, DB_STATEMENT_TIMEOUT_MS
from src.db_base import Base

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is required")
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def build_engine(database_url: str) -> Engine:
    """Create an engine with the onboarding timeout policy applied."""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    connect_args = {}
    if database_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_timeout=DB_POOL_TIMEOUT_SECONDS,
        connect_args=connect_args,
    )


def get_session_factory() -> sessionmaker:
    """Return the process-wide session factory, creating it on first use."""
    global _engine, _session_factory

    if _session_factory is None:
        _engine = build_engine(get_database_url())
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
        logger.info("Database engine initialized", extra={"dialect": _engine.dialect.name})

    return _session_factory


def get_db_session_sync() -> Generator[Session, None, None]:
    """Yield a session and always close it."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def get_db_session() -> Generator[Session, None, None]:
    """FastAPI dependency for a request-scoped session."""
    yield from get_db_session_sync()


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all onboarding tables that do not exist yet."""
    import src.models  # noqa: F401
    import src.platform.audit  # noqa: F401

    if engine is None:
        get_session_factory()
        engine = _engine

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ensured", extra={"tables": sorted(Base.metadata.tables)})
