"""
DiagramCore - Database Engine and Session Management
====================================================

What:  Async SQLAlchemy engine, session factory, declarative base, and a
       session scope that commits on success and rolls back on error.
How:   The engine is built lazily from settings on first use, so importing
       the models (Alembic, tests) never opens a connection or requires the
       production driver.
Who:   The SQL store, Alembic's env.py, and the composition root in main.py.

Connection Pooling Strategy (server databases):
    pool_size / max_overflow:  from settings (defaults 20 + 10)
    pool_pre_ping:             validates connections before use
    pool_recycle:              recycles long-lived connections
    SQLite gets none of these. It gets foreign keys switched on and every
    transaction opened with BEGIN IMMEDIATE, so a transaction holds the
    single writer lock from its first read until commit.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from diagramcore.config import Settings, settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Every model registers with this metadata; Alembic and the test fixtures
    build the schema from it.
    """
    pass


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    # SQLite ships with foreign key enforcement off for every new connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()
    # Stop the driver from emitting its own deferred BEGIN before the first DML;
    # _begin_sqlite_immediate issues the BEGIN instead
    dbapi_connection.isolation_level = None


def _begin_sqlite_immediate(conn) -> None:
    # Take the write lock up front so reads made before a write (the folder
    # ancestor walk, sibling-name checks) see the state the write commits to
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: Optional[str] = None, config: Optional[Settings] = None) -> AsyncEngine:
    """
    Create an async engine for `url` (defaults to settings.database_url).

    Pool arguments are only passed for server databases; the SQLite pool
    classes reject them.
    """
    cfg = config or settings
    database_url = url or cfg.database_url
    kwargs: Dict[str, Any] = {"echo": cfg.log_level == "DEBUG"}
    if not database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=cfg.db_pool_size,
            max_overflow=cfg.db_max_overflow,
            pool_pre_ping=cfg.db_pool_pre_ping,
            pool_recycle=cfg.db_pool_recycle,
        )

    engine = create_async_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)
        event.listen(engine.sync_engine, "begin", _begin_sqlite_immediate)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: records are built from rows after commit
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Process-wide engine ───────────────────────────────────────────────────
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def session_scope(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a session that commits on success and rolls back on any error.

    Used by scripts and tests that need direct table access; the services go
    through DiagramStore.transaction() instead.

    Example:
        async with session_scope() as session:
            session.add(User(email="a@example.com", username="a"))
    """
    async with (factory or get_session_factory())() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            # Roll back for any failure, including non-database bugs after a query
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_schema(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables from the model metadata (tests and local development)."""
    import diagramcore.models  # noqa: F401  (registers every model with Base)

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """
    Close every pooled connection of the process-wide engine.

    Called on shutdown; a later get_engine() builds a fresh engine.
    """
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
