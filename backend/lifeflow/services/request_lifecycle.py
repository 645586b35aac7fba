"""Request Lifecycle — the state machine driving a blood request to exactly one terminal state.

Invariants:
    - Every state change runs under the request's lock AND check_request_transition
    - Each transition's store writes share one store.transaction(): a failed write
      leaves the request and its responses exactly as they were
    - Validation runs before any lock is taken or anything is persisted
    - Events are published after the commit but inside the lock (per-request order =
      transition order)
    - EventPublishError and gateway failures for notifications/analytics are logged,
      never raised: the transition has already been committed
    - Only one response per request can be ACCEPTED (ACCEPTED -> ACCEPTED is illegal)
    - Matching for a request runs as its own asyncio task; cancel/expire signal it
      through an asyncio.Event

Design Decisions:
    - Constructor injection of store, bus, matching engine and gateway: tests swap
      in fakes without patching
    - Records are frozen: every transition is replace() + store.update_*()
    - Donor notifications and analytics happen after the lock is released so slow
      collaborators never hold up other transitions on the same request
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from lifeflow.core import lifecycle_events
from lifeflow.core.domain_types import (
    ACTIVE_STATUSES, OPEN_RESPONSE_STATUSES, RequestId, RequestStatus,
    ResponseId, ResponseStatus, is_terminal, urgency_weight,
)
from lifeflow.core.enforce_transitions import (
    check_request_transition, check_response_transition,
)
from lifeflow.core.errors import (
    DownstreamUnavailableError, EventPublishError, InvalidStateTransitionError,
    LifeFlowError, ResourceNotFoundError,
)
from lifeflow.core.lifecycle_events import LifecycleEvent
from lifeflow.core.repository_protocols import EventBus, RequestStore
from lifeflow.core.request_models import (
    BloodRequest, MatchResult, RequestResponse, RequestSpec,
)
from lifeflow.core.validate_request import (
    validate_create_spec, validate_eta_minutes, validate_reason,
    validate_units_delivered,
)
from lifeflow.infrastructure.downstream_gateway import DownstreamGateway
from lifeflow.services.matching_engine import MatchingEngine
from lifeflow.services.request_locks import RequestLockTable

logger = logging.getLogger(__name__)


def new_request_id() -> RequestId:
    return RequestId(f"req-{uuid.uuid4().hex[:8].upper()}")


def new_response_id() -> ResponseId:
    return ResponseId(f"resp-{uuid.uuid4().hex[:8].upper()}")


def new_confirmation_code() -> str:
    return uuid.uuid4().hex[:6].upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestLifecycle:

    def __init__(
        self,
        store: RequestStore,
        bus: EventBus,
        matching: MatchingEngine,
        gateway: DownstreamGateway,
        locks: RequestLockTable | None = None,
        now: Callable[[], datetime] = _utcnow,
        request_ids: Callable[[], RequestId] = new_request_id,
        response_ids: Callable[[], ResponseId] = new_response_id,
    ):
        self._store = store
        self._bus = bus
        self._matching = matching
        self._gateway = gateway
        self._locks = locks or RequestLockTable()
        self._now = now
        self._request_ids = request_ids
        self._response_ids = response_ids
        self._matching_tasks: dict[str, asyncio.Task] = {}
        self._cancel_signals: dict[str, asyncio.Event] = {}

    # --- Creation & matching -------------------------------------------------

    async def create_request(self, spec: RequestSpec) -> BloodRequest:
        """Validate, persist PENDING, emit BloodNeeded, schedule matching."""
        validated = validate_create_spec(spec)
        now = self._now()
        request = BloodRequest(
            id=self._request_ids(),
            hospital_id=validated.hospital_id,
            blood_type=validated.blood_type,
            units_required=validated.units_required,
            urgency=validated.urgency,
            urgency_score=urgency_weight(validated.urgency),
            deadline_minutes=validated.deadline_minutes,
            deadline=now + timedelta(minutes=validated.deadline_minutes),
            status=RequestStatus.PENDING,
            created_at=now,
            updated_at=now,
            patient_age=validated.patient_age,
            patient_condition=validated.patient_condition,
            procedure_type=validated.procedure_type,
            hospital_location=validated.hospital_location,
        )

        async with self._locks.hold(request.id):
            request = await self._store.add_request(request)
            logger.info(
                f"Emergency request created: {request.blood_type.value} "
                f"x{request.units_required}, deadline {request.deadline.isoformat()}",
                extra={"request_id": request.id},
            )
            event = lifecycle_events.blood_needed(request, now)
            await self._publish(event)

        await self._record_analytics(event)
        self._schedule_matching(request)
        return request

    def _schedule_matching(self, request: BloodRequest) -> None:
        cancel = asyncio.Event()
        task = asyncio.create_task(
            self._run_matching(request, cancel), name=f"matching-{request.id}",
        )
        self._matching_tasks[request.id] = task
        self._cancel_signals[request.id] = cancel
        task.add_done_callback(lambda _t, rid=request.id: self._forget_matching(rid))

    def _forget_matching(self, request_id: str) -> None:
        self._matching_tasks.pop(request_id, None)
        self._cancel_signals.pop(request_id, None)

    async def _run_matching(self, request: BloodRequest, cancel: asyncio.Event) -> None:
        log_extra = {"request_id": request.id}
        try:
            result = await self._matching.find_matches(request, cancel)
            if result.cancelled or cancel.is_set():
                logger.info("Matching stopped, request no longer active", extra=log_extra)
                return
            await self.match_found(request.id, result)
        except InvalidStateTransitionError as e:
            logger.info(f"Match result discarded: {e.message}", extra=log_extra)
        except LifeFlowError as e:
            logger.error(
                f"Matching failed: {e.message}",
                extra={**log_extra, "error_code": e.code},
            )
        except Exception:
            logger.exception("Unexpected error during matching", extra=log_extra)

    async def wait_for_matching(self, request_id: str) -> None:
        """Block until the background matching for request_id (if any) has finished."""
        task = self._matching_tasks.get(request_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def match_found(self, request_id: str, result: MatchResult) -> BloodRequest:
        """Advance a request with the outcome of matching."""
        log_extra = {"request_id": request_id}
        responses: list[RequestResponse] = []

        async with self._locks.hold(request_id):
            async with self._store.transaction():
                request = await self._load_request(request_id)
                now = self._now()

                if result.stock_sufficient:
                    check_request_transition(request.id, request.status, RequestStatus.ACCEPTED)
                    request = await self._store.update_request(replace(
                        request,
                        status=RequestStatus.ACCEPTED,
                        stock_checked=True,
                        fulfilled_from_stock=True,
                        updated_at=now,
                    ))
                    logger.info("Request accepted from inventory stock", extra=log_extra)
                    return request

                if not result.donors:
                    if is_terminal(request.status):
                        raise InvalidStateTransitionError(
                            request.id, request.status.value, request.status.value,
                            "request is in a terminal state",
                        )
                    request = await self._store.update_request(replace(
                        request, stock_checked=True, donor_search_initiated=True,
                        updated_at=now,
                    ))
                    logger.warning(
                        "No donors found" + (" (downstream degraded)" if result.degraded else "")
                        + ", request stays pending",
                        extra=log_extra,
                    )
                    return request

                check_request_transition(request.id, request.status, RequestStatus.MATCHED)
                request = await self._store.update_request(replace(
                    request,
                    status=RequestStatus.MATCHED,
                    stock_checked=True,
                    donor_search_initiated=True,
                    updated_at=now,
                ))
                for donor in result.donors:
                    responses.append(await self._store.add_response(RequestResponse(
                        id=self._response_ids(),
                        request_id=request.id,
                        donor_id=donor.donor_id,
                        hospital_id=request.hospital_id,
                        status=ResponseStatus.PENDING,
                        match_score=donor.final_score,
                        confirmation_code=new_confirmation_code(),
                        created_at=now,
                        updated_at=now,
                    )))
            logger.info(
                f"Request matched with {len(responses)} donor(s)"
                + (" (degraded)" if result.degraded else ""),
                extra=log_extra,
            )

        await asyncio.gather(*(self._notify(request, r) for r in responses))
        return request

    # --- Donor responses -----------------------------------------------------

    async def accept_response(self, response_id: str, eta_minutes: int) -> RequestResponse:
        """Donor accepts: request -> ACCEPTED, response -> ACCEPTED, emits DonorAccepted."""
        eta = validate_eta_minutes(eta_minutes)
        response = await self._load_response(response_id)

        async with self._locks.hold(response.request_id):
            async with self._store.transaction():
                response = await self._load_response(response_id)
                request = await self._load_request(response.request_id)
                check_request_transition(request.id, request.status, RequestStatus.ACCEPTED)
                check_response_transition(response.id, response.status, ResponseStatus.ACCEPTED)

                now = self._now()
                await self._store.update_request(replace(
                    request, status=RequestStatus.ACCEPTED, updated_at=now,
                ))
                response = await self._store.update_response(replace(
                    response,
                    status=ResponseStatus.ACCEPTED,
                    eta_minutes=eta,
                    scheduled_pickup_time=now + timedelta(minutes=eta),
                    confirmed_at=now,
                    updated_at=now,
                ))
            logger.info(
                f"Donor {response.donor_id} accepted, ETA {eta} min",
                extra={
                    "request_id": request.id,
                    "response_id": response.id,
                    "donor_id": response.donor_id,
                },
            )
            event = lifecycle_events.donor_accepted(response, now)
            await self._publish(event)

        await self._record_analytics(event)
        return response

    async def reject_response(self, response_id: str, reason: str) -> RequestResponse:
        """Donor declines: response -> REJECTED, request unchanged unless terminal."""
        reason = validate_reason(reason, "reason")
        response = await self._load_response(response_id)

        async with self._locks.hold(response.request_id):
            async with self._store.transaction():
                response = await self._load_response(response_id)
                request = await self._load_request(response.request_id)
                if is_terminal(request.status):
                    raise InvalidStateTransitionError(
                        response.id, response.status.value, ResponseStatus.REJECTED.value,
                        f"request {request.id} is {request.status.value}",
                    )
                check_response_transition(response.id, response.status, ResponseStatus.REJECTED)
                response = await self._store.update_response(replace(
                    response,
                    status=ResponseStatus.REJECTED,
                    rejection_reason=reason,
                    updated_at=self._now(),
                ))
        logger.info(
            f"Donor {response.donor_id} declined: {reason}",
            extra={"request_id": response.request_id, "response_id": response.id},
        )
        return response

    # --- Terminal transitions ------------------------------------------------

    async def fulfill(
        self,
        request_id: str,
        units_delivered: float,
        blood_bag_id: str | None = None,
    ) -> BloodRequest:
        """ACCEPTED -> FULFILLED, or PARTIAL_FULFILLED when fewer units arrived.

        Responses still waiting on a donor are closed as NO_RESPONSE.
        """
        units = validate_units_delivered(units_delivered)

        async with self._locks.hold(request_id):
            async with self._store.transaction():
                request = await self._load_request(request_id)
                target = (
                    RequestStatus.FULFILLED
                    if units >= request.units_required
                    else RequestStatus.PARTIAL_FULFILLED
                )
                check_request_transition(request.id, request.status, target)

                now = self._now()
                request = await self._store.update_request(replace(
                    request,
                    status=target,
                    units_delivered=units,
                    fulfilled_at=now,
                    updated_at=now,
                ))
                for response in await self._store.list_responses(request.id):
                    if response.status == ResponseStatus.PENDING:
                        await self._store.update_response(replace(
                            response, status=ResponseStatus.NO_RESPONSE, updated_at=now,
                        ))
                    elif response.status == ResponseStatus.ACCEPTED and blood_bag_id:
                        await self._store.update_response(replace(
                            response, blood_bag_id=blood_bag_id, updated_at=now,
                        ))
            logger.info(
                f"Request {target.value.lower()}: {units}/{request.units_required} units",
                extra={"request_id": request.id},
            )
            event = lifecycle_events.request_fulfilled(request, blood_bag_id, now)
            await self._publish(event)

        await self._record_analytics(event)
        return request

    async def cancel_request(self, request_id: str, reason: str) -> BloodRequest:
        """Any non-terminal -> CANCELLED; open responses cancelled, matching stopped."""
        reason = validate_reason(reason, "reason")

        async with self._locks.hold(request_id):
            async with self._store.transaction():
                request = await self._load_request(request_id)
                check_request_transition(request.id, request.status, RequestStatus.CANCELLED)

                now = self._now()
                request = await self._store.update_request(replace(
                    request,
                    status=RequestStatus.CANCELLED,
                    cancelled_at=now,
                    cancellation_reason=reason,
                    updated_at=now,
                ))
                await self._close_open_responses(request.id, ResponseStatus.CANCELLED, now)
            self._signal_stop_matching(request.id)
            logger.warning(
                f"Request cancelled: {reason}", extra={"request_id": request.id},
            )
            event = lifecycle_events.request_cancelled(request, now)
            await self._publish(event)

        await self._record_analytics(event)
        return request

    async def expire(self, request_id: str) -> BloodRequest:
        """Non-terminal and past its deadline -> EXPIRED. Already EXPIRED is a no-op."""
        async with self._locks.hold(request_id):
            async with self._store.transaction():
                request = await self._load_request(request_id)
                if request.status == RequestStatus.EXPIRED:
                    return request

                now = self._now()
                if now <= request.deadline:
                    raise InvalidStateTransitionError(
                        request.id, request.status.value, RequestStatus.EXPIRED.value,
                        "deadline has not passed",
                    )
                check_request_transition(request.id, request.status, RequestStatus.EXPIRED)

                request = await self._store.update_request(replace(
                    request,
                    status=RequestStatus.EXPIRED,
                    expired_at=now,
                    updated_at=now,
                ))
                await self._close_open_responses(request.id, ResponseStatus.NO_RESPONSE, now)
            self._signal_stop_matching(request.id)
            logger.warning("Request expired past its deadline", extra={"request_id": request.id})
            event = lifecycle_events.request_expired(request, now)
            await self._publish(event)

        await self._record_analytics(event)
        return request

    # --- Queries -------------------------------------------------------------

    async def get_request(self, request_id: str) -> BloodRequest:
        return await self._load_request(request_id)

    async def get_active_requests(self) -> list[BloodRequest]:
        return await self._store.list_by_status(ACTIVE_STATUSES)

    async def list_responses(self, request_id: str) -> list[RequestResponse]:
        request = await self._load_request(request_id)
        return await self._store.list_responses(request.id)

    async def get_matched_donors(self, request_id: str) -> MatchResult:
        """Run matching live against the request's current record."""
        request = await self._load_request(request_id)
        return await self._matching.find_matches(request)

    async def shutdown(self) -> None:
        """Cancel in-flight matching tasks and wait for them to unwind."""
        tasks = list(self._matching_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} matching task(s)")

    # --- Helpers -------------------------------------------------------------

    async def _load_request(self, request_id: str) -> BloodRequest:
        request = await self._store.get_request(RequestId(request_id))
        if request is None:
            raise ResourceNotFoundError("BloodRequest", request_id)
        return request

    async def _load_response(self, response_id: str) -> RequestResponse:
        response = await self._store.get_response(ResponseId(response_id))
        if response is None:
            raise ResourceNotFoundError("RequestResponse", response_id)
        return response

    async def _close_open_responses(
        self, request_id: str, target: ResponseStatus, now: datetime,
    ) -> None:
        for response in await self._store.list_responses(RequestId(request_id)):
            if response.status not in OPEN_RESPONSE_STATUSES:
                continue
            check_response_transition(response.id, response.status, target)
            await self._store.update_response(replace(
                response, status=target, updated_at=now,
            ))

    def _signal_stop_matching(self, request_id: str) -> None:
        cancel = self._cancel_signals.get(request_id)
        if cancel is not None:
            cancel.set()

    async def _publish(self, event: LifecycleEvent) -> None:
        try:
            await self._bus.publish(event)
        except EventPublishError as e:
            logger.error(
                f"Event not published: {e.message}",
                extra={
                    "request_id": event.request_id,
                    "event_type": event.event_type.value,
                    "topic": event.topic,
                    "error_code": e.code,
                },
            )

    async def _record_analytics(self, event: LifecycleEvent) -> None:
        try:
            await self._gateway.record_analytics(
                event.event_type.value, event.to_message(),
            )
        except DownstreamUnavailableError as e:
            logger.warning(
                f"Analytics not recorded: {e.reason}",
                extra={
                    "request_id": event.request_id,
                    "event_type": event.event_type.value,
                    "collaborator": e.collaborator,
                },
            )

    async def _notify(self, request: BloodRequest, response: RequestResponse) -> None:
        payload = {
            "type": "BLOOD_REQUEST",
            "requestId": request.id,
            "responseId": response.id,
            "bloodType": request.blood_type.value,
            "urgencyLevel": request.urgency.value,
            "hospitalId": request.hospital_id,
            "deadline": request.deadline.isoformat(),
            "confirmationCode": response.confirmation_code,
        }
        try:
            await self._gateway.notify_donor(response.donor_id, payload)
        except DownstreamUnavailableError as e:
            logger.warning(
                f"Donor notification failed: {e.reason}",
                extra={
                    "request_id": request.id,
                    "response_id": response.id,
                    "donor_id": response.donor_id,
                    "collaborator": e.collaborator,
                },
            )
