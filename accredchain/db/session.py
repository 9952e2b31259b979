"""Database session management for AccredChain.

This module provides SQLAlchemy engine and session management:
- get_engine(): The SQLAlchemy engine connected to the configured database
- get_session_factory(): Session factory bound to that engine
- init_database(): Create tables at startup

The engine is built on first use from ``config.DATABASE_URL`` so tests can
point it at a temporary database and call ``reset_engine()``.
"""

import logging
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from accredchain import config

log = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def _engine_kwargs(url: str) -> dict:
    # SQLite: StaticPool for local development (single connection)
    # PostgreSQL: connection pooling for production
    if url.startswith("sqlite"):
        from sqlalchemy.pool import StaticPool

        log.info("Using SQLite database (local development mode)")
        return {
            "echo": False,
            "pool_pre_ping": True,
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }

    log.info("Using PostgreSQL database (production mode)")
    return {
        "echo": False,
        "pool_pre_ping": True,      # Verify connections before use
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 1800,       # Recycle connections every 30 min
    }


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite PRAGMAs.

    - foreign_keys=ON: Enforce referential integrity
    - journal_mode=WAL: Better concurrent read performance
    - busy_timeout=5000: Wait up to 5s for locks
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def get_engine(url: str | None = None) -> Engine:
    """Get the global engine, creating it on first use."""
    global _engine, _session_factory

    if _engine is None:
        url = url or config.DATABASE_URL
        _engine = create_engine(url, **_engine_kwargs(url))
        if url.startswith("sqlite"):
            event.listen(_engine, "connect", _set_sqlite_pragma)
        _session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=_engine,
        )

    return _engine


def get_session_factory() -> sessionmaker:
    get_engine()
    return _session_factory


def init_database(url: str | None = None) -> Engine:
    """Initialize the database by creating all tables.

    Tables are created idempotently (CREATE IF NOT EXISTS). For SQLite the
    database directory is created first.
    """
    from accredchain.db.models import Base

    url = url or config.DATABASE_URL
    log.info(f"Initializing database at {url.split('@')[-1] if '@' in url else url}")

    if url.startswith("sqlite:///"):
        db_path = url.replace("sqlite:///", "")
        if db_path and db_path != ":memory:":
            db_dir = Path(db_path).parent
            db_dir.mkdir(parents=True, exist_ok=True)
            log.info(f"Ensured database directory exists: {db_dir}")

    engine = get_engine(url)
    Base.metadata.create_all(bind=engine)
    log.info("Database tables created successfully")
    return engine


def reset_engine() -> None:
    """Dispose the global engine (for testing)."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
