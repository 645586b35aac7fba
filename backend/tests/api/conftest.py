"""API test fixtures — the real FastAPI app over fake collaborators.

Invariants:
    - ASGITransport does not run the lifespan: fixtures populate app.state directly
    - app.state is restored after every test

Design Decisions:
    - Same fakes as the service tests: routes are exercised end to end down to
      the in-memory store
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from lifeflow.infrastructure.database import DatabaseSessionManager
from lifeflow.main import app
from lifeflow.services.matching_engine import MatchingEngine
from lifeflow.services.request_lifecycle import RequestLifecycle

from tests.services.fake_collaborators import (
    FakeDonors, FakeGeolocation, FakeInventory, InMemoryRequestStore,
    RecordingEventBus, donor, make_gateway,
)


@pytest.fixture
def donors():
    return FakeDonors([
        donor("d-1", "O_NEGATIVE", location="loc-a", reliability=20),
        donor("d-2", "O_POSITIVE", location="loc-b", reliability=10),
    ])


@pytest.fixture
def store():
    return InMemoryRequestStore()


@pytest.fixture
def bus():
    return RecordingEventBus()


@pytest.fixture
def gateway(donors):
    return make_gateway(
        inventory=FakeInventory(sufficient=False),
        donors=donors,
        geolocation=FakeGeolocation({"loc-a": 0.5, "loc-b": 4.0}),
    )


@pytest.fixture
async def lifecycle(store, bus, gateway):
    lc = RequestLifecycle(store, bus, MatchingEngine(gateway), gateway)
    yield lc
    await lc.shutdown()


@pytest.fixture
async def client(lifecycle, gateway):
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", poolclass=StaticPool,
    )
    app.state.db = DatabaseSessionManager.from_engine(engine)
    app.state.gateway = gateway
    app.state.lifecycle = lifecycle

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    for name in ("db", "gateway", "lifecycle"):
        delattr(app.state, name)
    await engine.dispose()
