"""Service test fixtures — fake collaborators wired into the real services.

Invariants:
    - Every test gets fresh fakes, a fresh in-memory store and a fresh breaker registry
    - The DownstreamGateway is real; only the clients behind it are fake
    - Time is a FakeClock: deadlines move only when a test advances it

Design Decisions:
    - Lifecycle built with deterministic id factories so assertions can name ids
"""

import itertools

import pytest

from lifeflow.core.domain_types import RequestId, ResponseId
from lifeflow.core.request_models import RequestSpec
from lifeflow.services.matching_engine import MatchingEngine
from lifeflow.services.request_lifecycle import RequestLifecycle

from tests.services.fake_collaborators import (
    FakeAnalytics, FakeClock, FakeDonors, FakeGeolocation, FakeInventory,
    FakeNotifications, InMemoryRequestStore, RecordingEventBus, make_gateway,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def inventory():
    return FakeInventory()


@pytest.fixture
def donors():
    return FakeDonors()


@pytest.fixture
def geolocation():
    return FakeGeolocation()


@pytest.fixture
def notifications():
    return FakeNotifications()


@pytest.fixture
def analytics():
    return FakeAnalytics()


@pytest.fixture
def bus():
    return RecordingEventBus()


@pytest.fixture
def store():
    return InMemoryRequestStore()


@pytest.fixture
def gateway(inventory, donors, geolocation, notifications, analytics):
    return make_gateway(inventory, donors, geolocation, notifications, analytics)


@pytest.fixture
def matching(gateway):
    return MatchingEngine(gateway)


@pytest.fixture
async def lifecycle(store, bus, matching, gateway, clock):
    request_seq = itertools.count(1)
    response_seq = itertools.count(1)
    lc = RequestLifecycle(
        store, bus, matching, gateway,
        now=clock,
        request_ids=lambda: RequestId(f"req-{next(request_seq):08d}"),
        response_ids=lambda: ResponseId(f"resp-{next(response_seq):08d}"),
    )
    yield lc
    await lc.shutdown()


@pytest.fixture
def make_spec():
    def _make(**overrides) -> RequestSpec:
        fields = {
            "hospital_id": "hosp-001",
            "blood_type": "O_NEGATIVE",
            "units_required": 2,
            "urgency": "CRITICAL",
            "deadline_minutes": 60,
            "hospital_location": "hospital",
        }
        fields.update(overrides)
        return RequestSpec(**fields)
    return _make
