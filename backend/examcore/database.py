"""
Database connection and session management module.

Uses SQLAlchemy for ORM operations. Supports PostgreSQL (production/Docker)
and SQLite (local development and tests).
The engines receive a session factory at construction; the module-level
SessionLocal is only the default wiring used by the FastAPI app.
"""

import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase

# Read database URL from environment
# Fallback to SQLite for local development when PostgreSQL is not available
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite:///./examcore.db"
)

# Seconds a SQLite connection waits on a locked database before failing
SQLITE_BUSY_TIMEOUT = int(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


def build_engine(url: str = DATABASE_URL):
    """
    Create a SQLAlchemy engine configured for the given database URL.

    SQLite connections run every transaction as BEGIN IMMEDIATE so that
    check-then-write sequences (attempt limit, session uniqueness,
    finalization) are serialized by the database write lock instead of
    failing with a lock upgrade error under concurrent writers.
    """
    # SQLite does not support pool_size, max_overflow, or pool_pre_ping
    engine_kwargs = {"echo": False}

    if url.startswith("postgresql"):
        engine_kwargs.update({
            "pool_size": 10,
            "max_overflow": 20,
            "pool_pre_ping": True,
        })
    elif url.startswith("sqlite"):
        # SQLite needs check_same_thread=False for FastAPI (multi-threaded)
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT,
        }

    engine = create_engine(url, **engine_kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            # Hand transaction control to the "begin" listener below
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_session_factory(engine):
    """Session factory bound to an engine; objects stay readable after commit."""
    return sessionmaker(autocommit=False, autoflush=False,
                        expire_on_commit=False, bind=engine)


engine = build_engine(DATABASE_URL)
SessionLocal = build_session_factory(engine)


def create_tables(bind=None):
    """
    Create all database tables directly (used for SQLite local dev and tests).
    For PostgreSQL, use Alembic migrations instead.
    """
    # Import models so they are registered with Base.metadata
    import examcore.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
