"""Infrastructure test fixtures — in-memory SQLite behind the real session manager.

Invariants:
    - Every test gets a fresh in-memory database with all tables created
    - StaticPool: every session shares the single in-memory connection

Design Decisions:
    - SQLite in-memory via aiosqlite: fast, no external dependency; Postgres-only
      features are not exercised by the store
"""

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from lifeflow.infrastructure.database import DatabaseSessionManager


@pytest.fixture
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool,
    )
    manager = DatabaseSessionManager.from_engine(engine)
    await manager.create_all()
    yield manager
    await engine.dispose()
