"""Lifecycle Events — one tagged variant for everything the lifecycle publishes.

Invariants:
    - Every event carries event_id, request_id, timestamp and event_type
    - Topic is derived from event_type only (EVENT_TOPICS)
    - Payload keys are the wire names (camelCase) consumed by subscribers

Design Decisions:
    - Single frozen dataclass with a discriminant instead of a class per event:
      the bus, the outbox row and the tests all handle one shape
    - Builders take domain records so callers never hand-assemble payload dicts
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from lifeflow.core.domain_types import EventType
from lifeflow.core.request_models import BloodRequest, RequestResponse


EVENT_TOPICS: dict[EventType, str] = {
    EventType.BLOOD_NEEDED: "event.blood.requested",
    EventType.DONOR_ACCEPTED: "event.donor.accepted",
    EventType.REQUEST_FULFILLED: "event.blood.request.fulfilled",
    EventType.REQUEST_CANCELLED: "event.blood.request.cancelled",
    EventType.REQUEST_EXPIRED: "event.blood.request.expired",
}


@dataclass(frozen=True)
class LifecycleEvent:
    event_type: EventType
    request_id: str
    timestamp: datetime
    payload: dict = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def topic(self) -> str:
        return topic_for(self.event_type)

    def to_message(self) -> dict:
        """Flat JSON-ready message as published on the topic."""
        return {
            "eventId": self.event_id,
            "eventType": self.event_type.value,
            "requestId": self.request_id,
            **self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


def topic_for(event_type: EventType) -> str:
    return EVENT_TOPICS[event_type]


# --- Builders -----------------------------------------------------------------

def blood_needed(request: BloodRequest, now: datetime) -> LifecycleEvent:
    return LifecycleEvent(
        event_type=EventType.BLOOD_NEEDED,
        request_id=request.id,
        timestamp=now,
        payload={
            "bloodType": request.blood_type.value,
            "unitsRequired": request.units_required,
            "urgencyLevel": request.urgency.value,
            "hospitalId": request.hospital_id,
            "deadlineMinutes": request.deadline_minutes,
        },
    )


def donor_accepted(response: RequestResponse, now: datetime) -> LifecycleEvent:
    pickup = response.scheduled_pickup_time
    return LifecycleEvent(
        event_type=EventType.DONOR_ACCEPTED,
        request_id=response.request_id,
        timestamp=now,
        payload={
            "responseId": response.id,
            "donorId": response.donor_id,
            "arrivalEtaMinutes": response.eta_minutes,
            "scheduledPickupTime": pickup.isoformat() if pickup else None,
        },
    )


def request_fulfilled(
    request: BloodRequest, blood_bag_id: str | None, now: datetime,
) -> LifecycleEvent:
    return LifecycleEvent(
        event_type=EventType.REQUEST_FULFILLED,
        request_id=request.id,
        timestamp=now,
        payload={
            "bloodBagId": blood_bag_id,
            "unitsDelivered": request.units_delivered,
            "status": request.status.value,
        },
    )


def request_cancelled(request: BloodRequest, now: datetime) -> LifecycleEvent:
    return LifecycleEvent(
        event_type=EventType.REQUEST_CANCELLED,
        request_id=request.id,
        timestamp=now,
        payload={"reason": request.cancellation_reason},
    )


def request_expired(request: BloodRequest, now: datetime) -> LifecycleEvent:
    return LifecycleEvent(
        event_type=EventType.REQUEST_EXPIRED,
        request_id=request.id,
        timestamp=now,
    )
