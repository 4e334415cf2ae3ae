"""
Module: erp_kernel.db.engine
Responsibility: The one SQLAlchemy engine the ERP runs against, and the
    session factory ``SqlRepository`` opens its units of work from.
Architecture position: Kernel > DB.  MUST NOT import erp_modules; module
    tables are registered by ``erp_modules._orm_registry.create_all_tables``.

The URL comes from ``ErpSettings.database_url``.  Two shapes are expected:

    - ``sqlite://`` (tests, single-process tools).  In-memory SQLite is one
      connection per database, so the pool is a StaticPool shared across
      threads; the concurrency tests reserve stock from several threads
      against the same file-less database.
    - ``postgresql://...`` (deployments).  A pre-pinging QueuePool at READ
      COMMITTED; stock rows are serialized by the keyed lock manager, not by
      the isolation level.

Failure modes:
    - RuntimeError from every accessor before ``init_engine_from_url()``.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from erp_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None


def _engine_options(database_url: str, pool_size: int, pool_timeout: int) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": pool_size // 2,
        "pool_pre_ping": True,
        "pool_timeout": pool_timeout,
        "pool_recycle": 1800,
        "isolation_level": "READ COMMITTED",
    }


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    pool_timeout: int = 30,
) -> Engine:
    """
    Open the engine for ``database_url`` and build the session factory.

    A second call disposes the previous engine first.  ``pool_size`` and
    ``pool_timeout`` only apply to pooled (non-SQLite) backends.
    """
    global _engine, _sessions

    reset_engine()
    _engine = create_engine(
        database_url, echo=echo, **_engine_options(database_url, pool_size, pool_timeout)
    )
    # Committed DTOs are returned to callers, so attributes must stay loaded.
    _sessions = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "pool": type(_engine.pool).__name__},
    )
    return _engine


def _require_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url() first")
    return _engine


def get_engine() -> Engine:
    return _require_engine()


def get_session_factory() -> sessionmaker[Session]:
    """The factory ``SqlRepository`` opens one session per transaction from."""
    _require_engine()
    assert _sessions is not None
    return _sessions


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    A session that commits on exit and rolls back on error.

    For ad-hoc reads and maintenance outside the repository; ledger and
    engine writes go through ``SqlRepository.transaction()``.
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """
    Create the kernel tables (parties, stock items, movements, sequence
    counters) plus any module tables already imported, then arm the
    immutability listeners that protect posted movements.
    """
    import erp_kernel.models  # noqa: F401
    import erp_kernel.services.sequence_service  # noqa: F401
    from erp_kernel.db.base import Base
    from erp_kernel.db.immutability import register_immutability_listeners

    engine = _require_engine()
    Base.metadata.create_all(engine)
    register_immutability_listeners()
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables() -> None:
    from erp_kernel.db.base import Base

    Base.metadata.drop_all(_require_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _sessions

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None


atexit.register(reset_engine)
