"""
DiagramCore - Test Configuration (conftest.py)
==============================================

What:  Shared pytest fixtures for the entire test suite.
How:   Services run against a real SQLite file database (aiosqlite) so the
       conditional UPDATE, upserts and foreign keys behave like they do in
       production. Failure paths use an AsyncMock store instead.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── engine: AsyncEngine on a throwaway SQLite file, schema created
    ├── store: SqlAlchemyDiagramStore on that engine
    ├── actors: Four users (alice, bob, carol, dave) inserted up front
    ├── make_settings: Builds Settings with overrides
    └── mock_store / mock_tx: DiagramStore double for failure injection
"""

import os
import tempfile
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio


# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Override settings for testing BEFORE any diagramcore imports
# Why: the settings singleton reads the environment at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.mkdtemp(prefix="diagramcore_test_"), "default.db"
)
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests

from diagramcore.config import Settings  # noqa: E402
from diagramcore.database import build_engine, build_session_factory, create_schema, session_scope  # noqa: E402
from diagramcore.models.user import User  # noqa: E402
from diagramcore.services.sql_store import SqlAlchemyDiagramStore  # noqa: E402
from diagramcore.services.store_base import DiagramStore, StoreTransaction  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def engine(tmp_path):
    """
    AsyncEngine on a fresh SQLite file with every table created.

    A file (not :memory:) so concurrent sessions get separate connections
    and really race on the same rows.
    """
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'diagramcore.db'}")
    await create_schema(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest_asyncio.fixture
async def store(engine):
    return SqlAlchemyDiagramStore(engine)


@pytest_asyncio.fixture
async def actors(engine):
    """
    Inserts four users and returns their ids as attributes.

    Usage:
        async def test_x(store, actors):
            await service.create_diagram(actors.alice, "Plan")
    """
    users = {
        "alice": User(email="alice@example.com", username="alice"),
        "bob": User(email="bob@example.com", username="bob"),
        "carol": User(email="Carol@Example.com", username="carol"),
        "dave": User(email="dave@example.com", username="dave"),
    }
    async with session_scope(build_session_factory(engine)) as session:
        session.add_all(users.values())
        await session.flush()
        ids = {name: user.id for name, user in users.items()}
    return SimpleNamespace(**ids)


@pytest.fixture
def make_settings():
    """
    Factory for Settings with overrides.

    Usage:
        settings = make_settings(folder_share_inheritance=True)
    """
    def _make(**overrides) -> Settings:
        return Settings(**overrides)
    return _make


# ══════════════════════════════════════════════════════════════════════════
# Mock Store (failure injection)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_tx():
    """
    StoreTransaction double; every method is an AsyncMock. Tests set the
    return values they rely on.

    Usage:
        mock_tx.get_diagram.return_value = record
        mock_tx.cas_update.side_effect = StorageUnavailableError()
    """
    return AsyncMock(spec=StoreTransaction)


@pytest.fixture
def mock_store(mock_tx):
    """DiagramStore double whose transaction() yields `mock_tx`."""

    @asynccontextmanager
    async def _transaction():
        yield mock_tx

    store_double = MagicMock(spec=DiagramStore)
    store_double.transaction.side_effect = _transaction
    store_double.close = AsyncMock()
    return store_double
