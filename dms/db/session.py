"""
DMS Database Session Management.

Provides the single entry point for DB initialisation plus a context manager
for transactional access.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dms.db.base import Base

_session_factory: Optional[sessionmaker] = None


def create_db_engine(db_url: str, **kwargs) -> Engine:
    """
    Create an engine for the given URL.

    In-memory SQLite (``sqlite://``) uses a StaticPool so every session shares
    one connection; SQLite connections get foreign-key enforcement switched on.
    """
    if db_url.startswith("sqlite"):
        engine_kwargs = {"connect_args": {"check_same_thread": False}}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
        engine = create_engine(db_url, **engine_kwargs)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(db_url, **kwargs)


def init_db(
    db_url: str,
    create_tables: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_pre_ping: bool = True,
) -> sessionmaker:
    """
    Initialise the DMS database.

    Args:
        db_url:        SQLAlchemy URL (postgresql://..., sqlite://...).
        create_tables: When True, run Base.metadata.create_all() — dev/tests
                       and ``dms init`` only.

    Returns:
        A ``sessionmaker`` bound to the new engine; also stored as the
        module-level factory used by ``session_scope()``.
    """
    global _session_factory

    # Importing models registers their tables on Base.metadata.
    from dms.db import models  # noqa: F401

    if db_url.startswith("sqlite"):
        engine = create_db_engine(db_url)
    else:
        engine = create_db_engine(
            db_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
        )

    if create_tables:
        Base.metadata.create_all(engine)

    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return _session_factory


def get_session() -> Session:
    """Get a new session from the initialised factory."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Context manager for DB sessions with auto-commit/rollback.

    Usage:
        with session_scope() as session:
            store = EntityStore(session, storage)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
