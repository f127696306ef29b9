"""
Database connection management for cronprobe.

Provides a lazily created SQLAlchemy engine and a session context manager.
Sessions are short-lived: one per store call, so worker threads never
share a session.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from cronprobe.config import get_config, CronprobeConfig

logger = logging.getLogger(__name__)

# Global engine and session factory (lazy-loaded)
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_db_path(config: Optional[CronprobeConfig] = None) -> Optional[Path]:
    """
    Get the database file path.

    Args:
        config: cronprobe configuration (uses global if not provided)

    Returns:
        Path to the SQLite database file, or None for non-file databases
    """
    if config is None:
        config = get_config()

    db_url = config.database_url
    if db_url.startswith("sqlite:///"):
        return Path(db_url[10:])
    return None


def init_engine(config: Optional[CronprobeConfig] = None) -> Engine:
    """
    Initialize the SQLAlchemy engine.

    Args:
        config: cronprobe configuration (uses global if not provided)

    Returns:
        Configured SQLAlchemy engine
    """
    global _engine

    if _engine is not None:
        return _engine

    if config is None:
        config = get_config()

    is_sqlite = config.database_url.startswith("sqlite")
    db_path = get_db_path(config)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    connect_args = {}
    if is_sqlite:
        connect_args = {
            "check_same_thread": False,  # Store calls run in worker threads
            "timeout": 30,
        }

    _engine = create_engine(
        config.database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=False,
    )

    if is_sqlite:
        @event.listens_for(_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable foreign keys so deleting a job cascades to its logs."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.debug(f"Database engine initialized: {config.database_url}")
    return _engine


def get_session_maker(config: Optional[CronprobeConfig] = None) -> sessionmaker:
    """Get or create the session maker."""
    global _SessionLocal

    if _SessionLocal is not None:
        return _SessionLocal

    engine = init_engine(config)
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )

    return _SessionLocal


@contextmanager
def get_db_session(config: Optional[CronprobeConfig] = None) -> Generator[Session, None, None]:
    """
    Get a database session context manager.

    Usage:
        with get_db_session() as session:
            job = session.get(CronJob, 1)

    Commits on success, rolls back and re-raises on error.
    """
    SessionLocal = get_session_maker(config)
    session = SessionLocal()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(config: Optional[CronprobeConfig] = None) -> None:
    """Create all database tables (no-op for tables that exist)."""
    from cronprobe.database.models import Base

    engine = init_engine(config)
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


def dispose_engine() -> None:
    """Close pooled connections and forget the global engine."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
        logger.debug("Database engine disposed")
    _engine = None
    _SessionLocal = None
