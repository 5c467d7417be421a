"""
Engine and session factory for the bookkeeping database.

SQLite is the default backend. Worker threads share one database file, so
connections enable WAL and a busy timeout: a writer that finds the database
locked waits instead of failing.
"""

from pathlib import Path
from typing import Callable

from sqlalchemy import create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from src.models import Base

SQLITE_BUSY_TIMEOUT_MS = 30000

SessionFactory = Callable[[], Session]


def _configure_sqlite_connection(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def create_database_engine(database_url: str) -> Engine:
    """Create the engine and make sure every table exists."""
    if database_url.startswith('sqlite'):
        db_path = database_url.split(':///', 1)[-1]
        if db_path and db_path != ':memory:':
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={'check_same_thread': False, 'timeout': SQLITE_BUSY_TIMEOUT_MS / 1000},
        )
        event.listen(engine, "connect", _configure_sqlite_connection)
    else:
        engine = create_engine(database_url, echo=False, pool_pre_ping=True)

    Base.metadata.create_all(engine)
    return engine


def create_session_factory(database_url: str) -> sessionmaker:
    return sessionmaker(bind=create_database_engine(database_url), expire_on_commit=False)


def dialect_insert(session: Session):
    """``insert`` construct with ON CONFLICT support for the session's backend."""
    dialect_name = session.get_bind().dialect.name
    if dialect_name == 'postgresql':
        return postgresql.insert
    if dialect_name == 'sqlite':
        return sqlite.insert
    raise NotImplementedError(f"Atomic upserts are not implemented for '{dialect_name}' databases.")
