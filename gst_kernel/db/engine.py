"""
Engine and session management for the SQL collaborator stores.

One engine per process, created by ``init_engine_from_url``.  The stores
receive a ``sessionmaker`` (or fall back to the process-wide one) and wrap
each call in ``session_scope`` so that every store method is exactly one
transaction.

SQLite URLs share a single connection through ``StaticPool``: an in-memory
database only lives as long as its connection, and the stores open a new
session per call.
"""

import atexit
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gst_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_lock = threading.Lock()
_engine: Engine | None = None
_factory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 5,
    pool_timeout: int = 10,
) -> Engine:
    """
    Create the process-wide engine, replacing (and disposing) any previous one.

    A pool that cannot hand out a connection within ``pool_timeout``
    raises, and the stores report that as a retryable collaborator failure.
    """
    global _engine, _factory

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
        )

    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = engine
        _factory = sessionmaker(bind=engine, expire_on_commit=False)

    logger.info("engine_initialized", extra={
        "dialect": engine.dialect.name,
        "pool": type(engine.pool).__name__,
    })
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _factory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    One transaction: commit when the block succeeds, roll back when it raises.

    The exception is always re-raised; the session is always closed.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every table registered by ``gst_kernel.models``."""
    from gst_kernel.db.base import Base
    import gst_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables() -> None:
    from gst_kernel.db.base import Base
    import gst_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory (tests only)."""
    global _engine, _factory
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _factory = None


atexit.register(reset_engine)
