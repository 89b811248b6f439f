"""
StudyPartner - Database Engine
SQLAlchemy setup for the response cache and adaptive state tables.
Works with SQLite (dev, tests) and PostgreSQL (prod).
"""

import logging
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from studypartner.config import DATABASE_URL

logger = logging.getLogger("studypartner.database")


# ─── Base Class ──────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# ─── Engine Setup ────────────────────────────────────────────────────────────

def make_engine(url: str = DATABASE_URL) -> Engine:
    """Build an engine with the pooling rules for the given backend."""
    if url.startswith("sqlite"):
        # SQLite needs special handling for concurrent access
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            if ":memory:" not in url:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    # PostgreSQL: standard pooled connection
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Test connections before use
        echo=False,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """Process-wide engine, created lazily on first use."""
    global _engine
    if _engine is None:
        _engine = make_engine(DATABASE_URL)
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all tables. Safe to run multiple times."""
    # Import models so their tables register on Base.metadata
    from studypartner import models  # noqa: F401

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database ready: {engine.url.render_as_string(hide_password=True)}")
