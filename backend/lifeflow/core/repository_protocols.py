"""Boundary Protocols — contracts between core and shell.

Invariants:
    - Core NEVER imports from shell — dependency arrows point inward only
    - All IO operations accessed through Protocol types
    - Implementations provided by the shell via constructor injection
    - Collaborator clients are only ever invoked by DownstreamGateway

Design Decisions:
    - Protocol over ABC: structural subtyping, test fakes need no inheritance
    - Async in Protocol: boundary methods are async because implementations do IO
"""

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Protocol

from lifeflow.core.domain_types import (
    BloodType, RequestId, ResponseId, RequestStatus,
)
from lifeflow.core.lifecycle_events import LifecycleEvent
from lifeflow.core.request_models import (
    BloodRequest, RequestResponse, EligibleDonor,
)


class RequestStore(Protocol):
    """Durability for request and response aggregates — implemented by shell.

    update_* compare the record's version with the stored one and raise
    ConcurrencyError on mismatch; they return the record with the bumped version.
    Calls made inside transaction() commit together; an exception discards them all.
    """
    def transaction(self) -> AbstractAsyncContextManager[None]: ...
    async def add_request(self, request: BloodRequest) -> BloodRequest: ...
    async def get_request(self, request_id: RequestId) -> BloodRequest | None: ...
    async def update_request(self, request: BloodRequest) -> BloodRequest: ...
    async def list_by_status(
        self, statuses: frozenset[RequestStatus],
    ) -> list[BloodRequest]: ...
    async def list_overdue(self, now: datetime) -> list[BloodRequest]: ...
    async def add_response(self, response: RequestResponse) -> RequestResponse: ...
    async def get_response(self, response_id: ResponseId) -> RequestResponse | None: ...
    async def update_response(self, response: RequestResponse) -> RequestResponse: ...
    async def list_responses(self, request_id: RequestId) -> list[RequestResponse]: ...


class EventBus(Protocol):
    """Publish-only event contract. Raises EventPublishError on failure."""
    async def publish(self, event: LifecycleEvent) -> None: ...


class InventoryClient(Protocol):
    async def check_stock(self, blood_type: BloodType, units: float) -> bool: ...


class DonorClient(Protocol):
    async def find_eligible(
        self, blood_type: BloodType, units: float,
    ) -> list[EligibleDonor]: ...


class GeolocationClient(Protocol):
    async def distance(self, origin: str, destination: str) -> float: ...


class NotificationClient(Protocol):
    async def send(self, donor_id: str, payload: dict) -> None: ...


class AnalyticsClient(Protocol):
    async def record(self, event_type: str, payload: dict) -> None: ...
