"""Blood Request Routes — thin HTTP surface over RequestLifecycle.

Invariants:
    - Handlers hold no state and no business rules: everything goes through
      the lifecycle on app.state
    - Errors propagate as LifeFlowError to the global handlers (no HTTPException here)
    - Output is always a schema built from a domain record

Design Decisions:
    - Lifecycle resolved through a Depends() provider: tests override app.state only
"""

import logging

from fastapi import APIRouter, Depends, Request, status

from lifeflow.schemas.blood_request import (
    AcceptBody, CancelBody, FulfillBody, MatchResultOut, RejectBody,
    RequestCreate, RequestOut, ResponseOut,
)
from lifeflow.services.request_lifecycle import RequestLifecycle

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/requests", tags=["requests"])
responses_router = APIRouter(prefix="/api/v1/responses", tags=["responses"])


def get_lifecycle(request: Request) -> RequestLifecycle:
    return request.app.state.lifecycle


# --- Requests -----------------------------------------------------------------

@router.post(
    "", response_model=RequestOut, status_code=status.HTTP_201_CREATED,
)
async def create_request(
    body: RequestCreate, lifecycle: RequestLifecycle = Depends(get_lifecycle),
):
    """Create an emergency blood request and start donor matching."""
    created = await lifecycle.create_request(body.to_spec())
    return RequestOut.from_record(created)


@router.get("/active", response_model=list[RequestOut])
async def list_active_requests(
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
):
    requests = await lifecycle.get_active_requests()
    return [RequestOut.from_record(r) for r in requests]


@router.get("/{request_id}", response_model=RequestOut)
async def get_request(
    request_id: str, lifecycle: RequestLifecycle = Depends(get_lifecycle),
):
    return RequestOut.from_record(await lifecycle.get_request(request_id))


@router.get("/{request_id}/matches", response_model=MatchResultOut)
async def get_matched_donors(
    request_id: str, lifecycle: RequestLifecycle = Depends(get_lifecycle),
):
    """Run matching live and return the ranked donors."""
    result = await lifecycle.get_matched_donors(request_id)
    return MatchResultOut.from_result(result)


@router.get("/{request_id}/responses", response_model=list[ResponseOut])
async def list_responses(
    request_id: str, lifecycle: RequestLifecycle = Depends(get_lifecycle),
):
    responses = await lifecycle.list_responses(request_id)
    return [ResponseOut.from_record(r) for r in responses]


@router.post("/{request_id}/cancel", response_model=RequestOut)
async def cancel_request(
    request_id: str,
    body: CancelBody,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
):
    cancelled = await lifecycle.cancel_request(request_id, body.reason)
    return RequestOut.from_record(cancelled)


@router.post("/{request_id}/fulfill", response_model=RequestOut)
async def fulfill_request(
    request_id: str,
    body: FulfillBody,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
):
    fulfilled = await lifecycle.fulfill(
        request_id, body.units_delivered, body.blood_bag_id,
    )
    return RequestOut.from_record(fulfilled)


# --- Donor responses ----------------------------------------------------------

@responses_router.post("/{response_id}/accept", response_model=ResponseOut)
async def accept_response(
    response_id: str,
    body: AcceptBody,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
):
    """Donor accepts with an arrival ETA."""
    accepted = await lifecycle.accept_response(response_id, body.eta_minutes)
    return ResponseOut.from_record(accepted)


@responses_router.post("/{response_id}/reject", response_model=ResponseOut)
async def reject_response(
    response_id: str,
    body: RejectBody,
    lifecycle: RequestLifecycle = Depends(get_lifecycle),
):
    rejected = await lifecycle.reject_response(response_id, body.reason)
    return ResponseOut.from_record(rejected)
