"""Database connection management for tracksync.

Engines are built from configuration rather than at import time so the
CLI, the scheduler entry point and tests can each point at their own
database.

Usage:
    from tracksync.db.connection import create_db_engine, create_session_factory, init_db

    engine = create_db_engine(config.database)
    init_db(engine)
    session_factory = create_session_factory(engine)
    with get_db_context(session_factory) as db:
        ...
"""

import logging
import os
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from tracksync.config import DatabaseConfig
from tracksync.db.models import Base

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def get_database_url(config: DatabaseConfig | None = None) -> str:
    """Get database URL from config, environment or use default SQLite.

    Precedence:
    1. config.url when set
    2. TRACKSYNC_DATABASE_URL
    3. DATABASE_URL
    4. sqlite file in the platform user data dir
    """
    if config is not None and config.url.strip():
        return config.url.strip()

    for var in ("TRACKSYNC_DATABASE_URL", "DATABASE_URL"):
        database_url = os.environ.get(var, "").strip()
        if database_url:
            return database_url

    from tracksync.utils.paths import ensure_dirs_exist, get_default_db_path

    ensure_dirs_exist()
    return f"sqlite:///{get_default_db_path()}"


def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Configure SQLite pragmas for correctness and concurrency.

    Enables:
    - foreign_keys=ON: Referential integrity (disabled by default in SQLite).
    - journal_mode=WAL: Concurrent readers alongside the single writer,
      needed because repository calls run in worker threads.
    - synchronous=NORMAL: Commits are durable after WAL fsync.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.close()


def create_db_engine(config: DatabaseConfig | None = None, url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine for the configured database.

    Args:
        config: Database section of the configuration.
        url: Explicit URL, overrides config and environment.

    Returns:
        Engine with SQLite pragmas installed when the URL is SQLite.
    """
    database_url = url or get_database_url(config)
    is_sqlite = database_url.startswith("sqlite")
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        echo=bool(config and config.echo),
    )
    if is_sqlite:
        event.listen(engine, "connect", _set_sqlite_pragma)
    logger.debug("Created engine for %s", engine.url.render_as_string(hide_password=True))
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build the session factory used by repositories."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@contextmanager
def get_db_context(session_factory: SessionFactory) -> Generator[Session, None, None]:
    """Context manager for a unit of work: commit on success, rollback on error.

    Usage:
        with get_db_context(session_factory) as db:
            row = db.get(Order, 1)
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Create all database tables.

    Safe to call multiple times - will not recreate existing tables.
    """
    Base.metadata.create_all(bind=engine)
