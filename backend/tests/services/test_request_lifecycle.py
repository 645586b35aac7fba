"""Request lifecycle tests — transitions, events, races and non-fatal side effects.

Invariants covered:
    - create_request persists PENDING with deadline = created_at + deadline_minutes
    - Matching moves PENDING -> MATCHED (responses + notifications), or straight to
      ACCEPTED from stock, or leaves it PENDING when nobody matched
    - Only one of two simultaneous acceptances wins
    - A failed write inside a transition leaves the request and its responses untouched
    - Terminal requests reject every transition and stay unchanged
    - Fulfillment closes responses still waiting on a donor
    - Cancellation stops in-flight matching and closes open responses
    - Publish / notification / analytics failures never fail the transition
"""

import asyncio
from datetime import timedelta

import pytest

from lifeflow.core.domain_types import EventType, RequestStatus, ResponseStatus
from lifeflow.core.errors import (
    ConcurrencyError, DatabaseError, InvalidStateTransitionError,
    ResourceNotFoundError, ValidationError,
)

from tests.services.fake_collaborators import donor


def _seed_donors(donors, geolocation):
    donors.donors = [
        donor("d-1", "O_NEGATIVE", location="loc-a", reliability=20),
        donor("d-2", "O_POSITIVE", location="loc-b", reliability=10),
    ]
    geolocation.distances = {"loc-a": 0.5, "loc-b": 4.0}


async def _matched(lifecycle, make_spec, donors, geolocation):
    _seed_donors(donors, geolocation)
    request = await lifecycle.create_request(make_spec())
    await lifecycle.wait_for_matching(request.id)
    return request


# ==============================================================================
# Creation
# ==============================================================================


async def test_create_persists_pending_with_deadline(lifecycle, store, clock, make_spec):
    request = await lifecycle.create_request(make_spec(deadline_minutes=45))

    assert request.status == RequestStatus.PENDING
    assert request.created_at == clock.now
    assert request.deadline == clock.now + timedelta(minutes=45)
    assert request.urgency_score == 100
    assert request.id in store.requests


async def test_create_emits_blood_needed_and_records_analytics(
    lifecycle, bus, analytics, make_spec,
):
    request = await lifecycle.create_request(make_spec())

    [event] = bus.of_type(EventType.BLOOD_NEEDED)
    assert event.request_id == request.id
    assert event.topic == "event.blood.requested"
    assert event.payload["bloodType"] == "O_NEGATIVE"
    assert analytics.recorded[0][0] == "BLOOD_NEEDED"


@pytest.mark.parametrize("minutes", [4, 1441])
async def test_create_rejects_out_of_range_deadline(lifecycle, store, bus, make_spec, minutes):
    with pytest.raises(ValidationError) as exc:
        await lifecycle.create_request(make_spec(deadline_minutes=minutes))

    assert exc.value.field == "deadline_minutes"
    assert store.requests == {}
    assert bus.events == []


async def test_create_survives_publish_failure(lifecycle, bus, store, make_spec):
    bus.fail = True

    request = await lifecycle.create_request(make_spec())

    assert store.status_of(request.id) == RequestStatus.PENDING


# ==============================================================================
# Matching outcomes
# ==============================================================================


async def test_matching_moves_to_matched_and_notifies_donors(
    lifecycle, store, donors, geolocation, notifications, make_spec,
):
    request = await _matched(lifecycle, make_spec, donors, geolocation)

    assert store.status_of(request.id) == RequestStatus.MATCHED
    responses = await lifecycle.list_responses(request.id)
    assert [r.donor_id for r in responses] == ["d-1", "d-2"]
    assert [r.match_score for r in responses] == [135, 83]
    assert all(r.status == ResponseStatus.PENDING for r in responses)
    assert sorted(d for d, _ in notifications.sent) == ["d-1", "d-2"]


async def test_matching_from_stock_accepts_directly(
    lifecycle, store, bus, inventory, make_spec,
):
    inventory.sufficient = True

    request = await lifecycle.create_request(make_spec())
    await lifecycle.wait_for_matching(request.id)

    stored = store.requests[request.id]
    assert stored.status == RequestStatus.ACCEPTED
    assert stored.fulfilled_from_stock
    assert bus.of_type(EventType.DONOR_ACCEPTED) == []
    assert store.responses == {}


async def test_no_donors_leaves_request_pending(lifecycle, store, make_spec):
    request = await lifecycle.create_request(make_spec())
    await lifecycle.wait_for_matching(request.id)

    stored = store.requests[request.id]
    assert stored.status == RequestStatus.PENDING
    assert stored.donor_search_initiated


async def test_notification_failure_does_not_block_matching(
    lifecycle, store, donors, geolocation, notifications, make_spec,
):
    notifications.error = ConnectionError("sms gateway down")

    request = await _matched(lifecycle, make_spec, donors, geolocation)

    assert store.status_of(request.id) == RequestStatus.MATCHED


# ==============================================================================
# Acceptance
# ==============================================================================


async def test_accept_response_schedules_pickup_and_emits(
    lifecycle, store, bus, clock, donors, geolocation, make_spec,
):
    request = await _matched(lifecycle, make_spec, donors, geolocation)
    [first, _] = await lifecycle.list_responses(request.id)

    accepted = await lifecycle.accept_response(first.id, eta_minutes=20)

    assert accepted.status == ResponseStatus.ACCEPTED
    assert accepted.scheduled_pickup_time == clock.now + timedelta(minutes=20)
    assert store.status_of(request.id) == RequestStatus.ACCEPTED
    [event] = bus.of_type(EventType.DONOR_ACCEPTED)
    assert event.payload["responseId"] == first.id
    assert event.payload["arrivalEtaMinutes"] == 20


async def test_concurrent_accepts_only_one_wins(
    lifecycle, store, bus, donors, geolocation, make_spec,
):
    request = await _matched(lifecycle, make_spec, donors, geolocation)
    first, second = await lifecycle.list_responses(request.id)

    results = await asyncio.gather(
        lifecycle.accept_response(first.id, 10),
        lifecycle.accept_response(second.id, 15),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidStateTransitionError)
    assert len(bus.of_type(EventType.DONOR_ACCEPTED)) == 1
    statuses = sorted(r.status.value for r in await lifecycle.list_responses(request.id))
    assert statuses == ["ACCEPTED", "PENDING"]


async def test_failed_response_write_rolls_back_acceptance(
    lifecycle, store, bus, donors, geolocation, make_spec,
):
    request = await _matched(lifecycle, make_spec, donors, geolocation)
    [first, _] = await lifecycle.list_responses(request.id)

    async def stale_write(response):
        raise ConcurrencyError(f"Response '{response.id}' modified concurrently")

    store.update_response = stale_write

    with pytest.raises(ConcurrencyError):
        await lifecycle.accept_response(first.id, 10)

    assert store.status_of(request.id) == RequestStatus.MATCHED
    assert store.responses[first.id].status == ResponseStatus.PENDING
    assert bus.of_type(EventType.DONOR_ACCEPTED) == []


async def test_failed_response_insert_rolls_back_match(
    lifecycle, store, donors, geolocation, notifications, make_spec,
):
    _seed_donors(donors, geolocation)
    add_response = store.add_response
    inserted = []

    async def fail_on_second(response):
        if inserted:
            raise DatabaseError("Integrity constraint violated", "commit")
        inserted.append(response.id)
        return await add_response(response)

    store.add_response = fail_on_second

    request = await lifecycle.create_request(make_spec())
    await lifecycle.wait_for_matching(request.id)

    assert store.status_of(request.id) == RequestStatus.PENDING
    assert store.responses == {}
    assert notifications.sent == []


async def test_accept_unknown_response_is_not_found(lifecycle):
    with pytest.raises(ResourceNotFoundError):
        await lifecycle.accept_response("resp-NOPE", 10)


async def test_reject_response_keeps_request_state(
    lifecycle, store, donors, geolocation, make_spec,
):
    request = await _matched(lifecycle, make_spec, donors, geolocation)
    [first, _] = await lifecycle.list_responses(request.id)

    rejected = await lifecycle.reject_response(first.id, "not available today")

    assert rejected.status == ResponseStatus.REJECTED
    assert rejected.rejection_reason == "not available today"
    assert store.status_of(request.id) == RequestStatus.MATCHED


# ==============================================================================
# Fulfillment & terminal immutability
# ==============================================================================


async def _accepted(lifecycle, make_spec, donors, geolocation):
    request = await _matched(lifecycle, make_spec, donors, geolocation)
    [first, _] = await lifecycle.list_responses(request.id)
    await lifecycle.accept_response(first.id, 10)
    return request, first


async def test_fulfill_full_delivery(lifecycle, store, bus, donors, geolocation, make_spec):
    request, accepted = await _accepted(lifecycle, make_spec, donors, geolocation)

    fulfilled = await lifecycle.fulfill(request.id, 2, blood_bag_id="bag-77")

    assert fulfilled.status == RequestStatus.FULFILLED
    assert fulfilled.units_delivered == 2
    [event] = bus.of_type(EventType.REQUEST_FULFILLED)
    assert event.payload["bloodBagId"] == "bag-77"
    assert store.responses[accepted.id].blood_bag_id == "bag-77"


async def test_fulfill_short_delivery_is_partial(lifecycle, donors, geolocation, make_spec):
    request, _ = await _accepted(lifecycle, make_spec, donors, geolocation)

    fulfilled = await lifecycle.fulfill(request.id, 1.5)

    assert fulfilled.status == RequestStatus.PARTIAL_FULFILLED


async def test_fulfill_requires_acceptance(lifecycle, make_spec):
    request = await lifecycle.create_request(make_spec())
    await lifecycle.wait_for_matching(request.id)

    with pytest.raises(InvalidStateTransitionError):
        await lifecycle.fulfill(request.id, 2)


async def test_fulfill_closes_waiting_responses(
    lifecycle, store, donors, geolocation, make_spec,
):
    request, accepted = await _accepted(lifecycle, make_spec, donors, geolocation)

    await lifecycle.fulfill(request.id, 2)

    statuses = {r.id: r.status for r in await lifecycle.list_responses(request.id)}
    assert statuses.pop(accepted.id) == ResponseStatus.ACCEPTED
    assert set(statuses.values()) == {ResponseStatus.NO_RESPONSE}


async def test_reject_after_fulfillment_is_refused(
    lifecycle, store, donors, geolocation, make_spec,
):
    request, _ = await _accepted(lifecycle, make_spec, donors, geolocation)
    [_, waiting] = await lifecycle.list_responses(request.id)
    await lifecycle.fulfill(request.id, 1)
    before = store.responses[waiting.id]

    with pytest.raises(InvalidStateTransitionError) as exc:
        await lifecycle.reject_response(waiting.id, "too late")

    assert "PARTIAL_FULFILLED" in exc.value.message
    assert store.responses[waiting.id] == before


async def test_failed_close_rolls_back_cancellation(
    lifecycle, store, bus, donors, geolocation, make_spec,
):
    request = await _matched(lifecycle, make_spec, donors, geolocation)
    update_response = store.update_response
    written = []

    async def fail_on_second(response):
        if written:
            raise ConcurrencyError(f"Response '{response.id}' modified concurrently")
        written.append(response.id)
        return await update_response(response)

    store.update_response = fail_on_second

    with pytest.raises(ConcurrencyError):
        await lifecycle.cancel_request(request.id, "patient transferred")

    assert store.status_of(request.id) == RequestStatus.MATCHED
    responses = await lifecycle.list_responses(request.id)
    assert all(r.status == ResponseStatus.PENDING for r in responses)
    assert bus.of_type(EventType.REQUEST_CANCELLED) == []


async def test_terminal_request_rejects_every_transition(
    lifecycle, store, bus, clock, donors, geolocation, make_spec,
):
    request, _ = await _accepted(lifecycle, make_spec, donors, geolocation)
    await lifecycle.fulfill(request.id, 2)
    before = store.requests[request.id]
    events_before = len(bus.events)
    clock.advance(120)

    for attempt in (
        lifecycle.fulfill(request.id, 2),
        lifecycle.cancel_request(request.id, "duplicate"),
        lifecycle.expire(request.id),
    ):
        with pytest.raises(InvalidStateTransitionError):
            await attempt

    assert store.requests[request.id] == before
    assert len(bus.events) == events_before


# ==============================================================================
# Cancellation & expiry
# ==============================================================================


async def test_cancel_closes_open_responses(
    lifecycle, store, bus, donors, geolocation, make_spec,
):
    request = await _matched(lifecycle, make_spec, donors, geolocation)

    cancelled = await lifecycle.cancel_request(request.id, "patient transferred")

    assert cancelled.status == RequestStatus.CANCELLED
    assert cancelled.cancellation_reason == "patient transferred"
    responses = await lifecycle.list_responses(request.id)
    assert all(r.status == ResponseStatus.CANCELLED for r in responses)
    [event] = bus.of_type(EventType.REQUEST_CANCELLED)
    assert event.payload["reason"] == "patient transferred"


async def test_cancel_interrupts_inflight_matching(
    lifecycle, store, donors, geolocation, make_spec,
):
    _seed_donors(donors, geolocation)
    request = await lifecycle.create_request(make_spec())

    # matching task is scheduled but has not run yet
    await lifecycle.cancel_request(request.id, "no longer needed")
    await lifecycle.wait_for_matching(request.id)

    assert store.status_of(request.id) == RequestStatus.CANCELLED
    assert store.responses == {}
    assert geolocation.calls == []


async def test_cancel_requires_reason(lifecycle, make_spec):
    request = await lifecycle.create_request(make_spec())

    with pytest.raises(ValidationError):
        await lifecycle.cancel_request(request.id, "   ")


async def test_expire_before_deadline_is_rejected(lifecycle, store, make_spec):
    request = await lifecycle.create_request(make_spec(deadline_minutes=30))
    await lifecycle.wait_for_matching(request.id)

    with pytest.raises(InvalidStateTransitionError):
        await lifecycle.expire(request.id)
    assert store.status_of(request.id) == RequestStatus.PENDING


async def test_expire_marks_open_responses_no_response(
    lifecycle, store, bus, clock, donors, geolocation, make_spec,
):
    request = await _matched(lifecycle, make_spec, donors, geolocation)
    clock.advance(61)

    expired = await lifecycle.expire(request.id)
    again = await lifecycle.expire(request.id)

    assert expired.status == RequestStatus.EXPIRED
    assert again == expired
    responses = await lifecycle.list_responses(request.id)
    assert all(r.status == ResponseStatus.NO_RESPONSE for r in responses)
    assert len(bus.of_type(EventType.REQUEST_EXPIRED)) == 1


# ==============================================================================
# Queries
# ==============================================================================


async def test_get_active_requests_excludes_terminal(lifecycle, make_spec):
    keep = await lifecycle.create_request(make_spec())
    drop = await lifecycle.create_request(make_spec())
    await lifecycle.cancel_request(drop.id, "duplicate request")

    active = await lifecycle.get_active_requests()

    assert [r.id for r in active] == [keep.id]


async def test_get_request_unknown_id(lifecycle):
    with pytest.raises(ResourceNotFoundError):
        await lifecycle.get_request("req-MISSING")


async def test_get_matched_donors_runs_live(lifecycle, donors, geolocation, make_spec):
    request = await lifecycle.create_request(make_spec())
    await lifecycle.wait_for_matching(request.id)
    _seed_donors(donors, geolocation)

    result = await lifecycle.get_matched_donors(request.id)

    assert [d.final_score for d in result.donors] == [135, 83]
