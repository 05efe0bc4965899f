"""
Database base configuration and utilities for the ImpactLedger stores
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

# Create declarative base
Base = declarative_base()


def create_db_engine(url: str, **kwargs) -> Engine:
    """
    Create a new SQLAlchemy engine

    In-memory SQLite URLs share one connection across threads so every
    session sees the same database.

    Args:
        url: Database URL
        **kwargs: Pool and echo settings

    Returns:
        SQLAlchemy Engine
    """
    if url.startswith("sqlite"):
        engine_config = {
            "connect_args": {"check_same_thread": False},
            "echo": kwargs.get("echo", False),
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine_config["poolclass"] = StaticPool
    else:
        engine_config = {
            "poolclass": QueuePool,
            "pool_size": kwargs.get("pool_size", 5),
            "max_overflow": kwargs.get("max_overflow", 10),
            "pool_timeout": kwargs.get("pool_timeout", 30),
            "pool_recycle": kwargs.get("pool_recycle", 3600),
            "echo": kwargs.get("echo", False),
        }

    engine = create_engine(url, **engine_config)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Transactional scope around a series of operations

    Args:
        session_factory: Factory producing sessions

    Yields:
        Database session, committed on success and rolled back on error
    """
    session = session_factory()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine, drop_all: bool = False) -> None:
    """
    Create all impact tables on the given engine

    Args:
        engine: SQLAlchemy engine
        drop_all: If True, drop all tables first
    """
    # Register table definitions on Base.metadata
    from impactledger.db import models  # noqa: F401

    if drop_all:
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine)
