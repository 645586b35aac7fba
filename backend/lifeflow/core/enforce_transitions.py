"""Transition Enforcement — the request/response state machines as data.

Invariants:
    - All functions are PURE: no IO, no side effects
    - Terminal request states have no outgoing transitions
    - check_* raise InvalidStateTransitionError and never return a partial result

Design Decisions:
    - Transition table as a dict of frozensets: the whole state machine is visible in one place
"""

from lifeflow.core.domain_types import (
    RequestStatus, ResponseStatus, is_terminal,
)
from lifeflow.core.errors import InvalidStateTransitionError


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.MATCHED,
        RequestStatus.ACCEPTED,
        RequestStatus.CANCELLED,
        RequestStatus.EXPIRED,
    }),
    RequestStatus.MATCHED: frozenset({
        RequestStatus.ACCEPTED,
        RequestStatus.CANCELLED,
        RequestStatus.EXPIRED,
    }),
    RequestStatus.ACCEPTED: frozenset({
        RequestStatus.FULFILLED,
        RequestStatus.PARTIAL_FULFILLED,
        RequestStatus.CANCELLED,
        RequestStatus.EXPIRED,
    }),
    RequestStatus.FULFILLED: frozenset(),
    RequestStatus.PARTIAL_FULFILLED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
}

RESPONSE_TRANSITIONS: dict[ResponseStatus, frozenset[ResponseStatus]] = {
    ResponseStatus.PENDING: frozenset({
        ResponseStatus.ACCEPTED,
        ResponseStatus.REJECTED,
        ResponseStatus.NO_RESPONSE,
        ResponseStatus.CANCELLED,
    }),
    ResponseStatus.ACCEPTED: frozenset({
        ResponseStatus.CANCELLED,
        ResponseStatus.NO_RESPONSE,
    }),
    ResponseStatus.REJECTED: frozenset(),
    ResponseStatus.NO_RESPONSE: frozenset(),
    ResponseStatus.CANCELLED: frozenset(),
}


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in REQUEST_TRANSITIONS[current]


def check_request_transition(
    request_id: str, current: RequestStatus, target: RequestStatus,
) -> None:
    """Raise unless current -> target is a legal request transition."""
    if can_transition(current, target):
        return
    reason = "request is in a terminal state" if is_terminal(current) else None
    raise InvalidStateTransitionError(
        request_id, current.value, target.value, reason,
    )


def check_response_transition(
    response_id: str, current: ResponseStatus, target: ResponseStatus,
) -> None:
    if target in RESPONSE_TRANSITIONS[current]:
        return
    raise InvalidStateTransitionError(response_id, current.value, target.value)


def reachable_from(current: RequestStatus) -> frozenset[RequestStatus]:
    return REQUEST_TRANSITIONS[current]
