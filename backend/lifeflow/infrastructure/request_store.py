"""SQLAlchemy Request Store — RequestStore implementation over the async session manager.

Invariants:
    - Outside transaction() every method opens its own session and commits before returning
    - Inside transaction() every method shares one session; nothing is committed until
      the block exits cleanly, and an exception discards all of the block's writes
    - update_* are compare-and-swap on version: stale writes raise ConcurrencyError
    - Rows never leave this module — callers only see frozen domain records
    - Datetimes come back timezone-aware (UTC) even on backends that drop tzinfo

Design Decisions:
    - Explicit row <-> record mapping functions instead of ORM relationships:
      responses reference requests by id and are loaded on demand
    - The ambient session lives in a ContextVar so the lifecycle keeps calling the
      same store methods whether or not a unit of work is open
"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lifeflow.core.domain_types import (
    ACTIVE_STATUSES, BloodType, UrgencyLevel, RequestStatus, ResponseStatus,
    RequestId, ResponseId, DonorId, HospitalId,
)
from lifeflow.core.errors import ConcurrencyError
from lifeflow.core.request_models import BloodRequest, RequestResponse
from lifeflow.infrastructure.database import DatabaseSessionManager
from lifeflow.models.blood_request import BloodRequestRow
from lifeflow.models.request_response import RequestResponseRow

logger = logging.getLogger(__name__)

_ambient_session: ContextVar[AsyncSession | None] = ContextVar(
    "request_store_session", default=None,
)

_REQUEST_FIELDS = (
    "hospital_id", "units_required", "urgency_score", "patient_age",
    "patient_condition", "procedure_type", "hospital_location",
    "deadline_minutes", "deadline", "created_at", "updated_at",
    "stock_checked", "donor_search_initiated", "fulfilled_from_stock",
    "units_delivered", "fulfilled_at", "cancelled_at", "cancellation_reason",
    "expired_at",
)

_RESPONSE_FIELDS = (
    "request_id", "donor_id", "hospital_id", "match_score", "confirmation_code",
    "eta_minutes", "scheduled_pickup_time", "confirmed_at", "rejection_reason",
    "blood_bag_id", "created_at", "updated_at",
)


class SqlAlchemyRequestStore:
    """Durable RequestStore backed by blood_requests / request_responses."""

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[None, None]:
        """Unit of work: store calls inside the block commit together or not at all.

        Nested blocks join the outer one.
        """
        if _ambient_session.get() is not None:
            yield
            return
        async with self._db.session() as session:
            token = _ambient_session.set(session)
            try:
                yield
                await session.commit()
            finally:
                _ambient_session.reset(token)

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        ambient = _ambient_session.get()
        if ambient is not None:
            yield ambient
            await ambient.flush()
            return
        async with self._db.session() as session:
            yield session
            await session.commit()

    # --- Requests ------------------------------------------------------------

    async def add_request(self, request: BloodRequest) -> BloodRequest:
        async with self._session() as session:
            session.add(_request_to_row(request))
        return request

    async def get_request(self, request_id: RequestId) -> BloodRequest | None:
        async with self._session() as session:
            row = await session.get(BloodRequestRow, request_id)
            return _row_to_request(row) if row else None

    async def update_request(self, request: BloodRequest) -> BloodRequest:
        values = _request_values(request)
        values["version"] = request.version + 1
        async with self._session() as session:
            result = await session.execute(
                update(BloodRequestRow)
                .where(BloodRequestRow.id == request.id)
                .where(BloodRequestRow.version == request.version)
                .values(**values),
            )
        if result.rowcount != 1:
            logger.warning(
                "Stale request update rejected",
                extra={"request_id": request.id},
            )
            raise ConcurrencyError(
                f"Request '{request.id}' was modified concurrently (version {request.version})",
            )
        return replace(request, version=request.version + 1)

    async def list_by_status(
        self, statuses: frozenset[RequestStatus],
    ) -> list[BloodRequest]:
        async with self._session() as session:
            result = await session.execute(
                select(BloodRequestRow)
                .where(BloodRequestRow.status.in_([s.value for s in statuses]))
                .order_by(BloodRequestRow.created_at.asc()),
            )
            return [_row_to_request(r) for r in result.scalars().all()]

    async def list_overdue(self, now: datetime) -> list[BloodRequest]:
        async with self._session() as session:
            result = await session.execute(
                select(BloodRequestRow)
                .where(BloodRequestRow.status.in_([s.value for s in ACTIVE_STATUSES]))
                .where(BloodRequestRow.deadline < now)
                .order_by(BloodRequestRow.deadline.asc()),
            )
            return [_row_to_request(r) for r in result.scalars().all()]

    # --- Responses -----------------------------------------------------------

    async def add_response(self, response: RequestResponse) -> RequestResponse:
        async with self._session() as session:
            session.add(_response_to_row(response))
        return response

    async def get_response(self, response_id: ResponseId) -> RequestResponse | None:
        async with self._session() as session:
            row = await session.get(RequestResponseRow, response_id)
            return _row_to_response(row) if row else None

    async def update_response(self, response: RequestResponse) -> RequestResponse:
        values = {f: getattr(response, f) for f in _RESPONSE_FIELDS}
        values["status"] = response.status.value
        values["version"] = response.version + 1
        async with self._session() as session:
            result = await session.execute(
                update(RequestResponseRow)
                .where(RequestResponseRow.id == response.id)
                .where(RequestResponseRow.version == response.version)
                .values(**values),
            )
        if result.rowcount != 1:
            raise ConcurrencyError(
                f"Response '{response.id}' was modified concurrently (version {response.version})",
            )
        return replace(response, version=response.version + 1)

    async def list_responses(self, request_id: RequestId) -> list[RequestResponse]:
        async with self._session() as session:
            result = await session.execute(
                select(RequestResponseRow)
                .where(RequestResponseRow.request_id == request_id)
                .order_by(
                    RequestResponseRow.match_score.desc(),
                    RequestResponseRow.id.asc(),
                ),
            )
            return [_row_to_response(r) for r in result.scalars().all()]


# --- Mapping ------------------------------------------------------------------

def _utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _request_values(request: BloodRequest) -> dict:
    values = {f: getattr(request, f) for f in _REQUEST_FIELDS}
    values["blood_type"] = request.blood_type.value
    values["urgency"] = request.urgency.value
    values["status"] = request.status.value
    return values


def _request_to_row(request: BloodRequest) -> BloodRequestRow:
    return BloodRequestRow(
        id=request.id, version=request.version, **_request_values(request),
    )


def _row_to_request(row: BloodRequestRow) -> BloodRequest:
    return BloodRequest(
        id=RequestId(row.id),
        hospital_id=HospitalId(row.hospital_id),
        blood_type=BloodType(row.blood_type),
        units_required=row.units_required,
        urgency=UrgencyLevel(row.urgency),
        urgency_score=row.urgency_score,
        deadline_minutes=row.deadline_minutes,
        deadline=_utc(row.deadline),
        status=RequestStatus(row.status),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
        patient_age=row.patient_age,
        patient_condition=row.patient_condition,
        procedure_type=row.procedure_type,
        hospital_location=row.hospital_location,
        stock_checked=row.stock_checked,
        donor_search_initiated=row.donor_search_initiated,
        fulfilled_from_stock=row.fulfilled_from_stock,
        units_delivered=row.units_delivered,
        fulfilled_at=_utc(row.fulfilled_at),
        cancelled_at=_utc(row.cancelled_at),
        cancellation_reason=row.cancellation_reason,
        expired_at=_utc(row.expired_at),
        version=row.version,
    )


def _response_to_row(response: RequestResponse) -> RequestResponseRow:
    values = {f: getattr(response, f) for f in _RESPONSE_FIELDS}
    return RequestResponseRow(
        id=response.id,
        status=response.status.value,
        version=response.version,
        **values,
    )


def _row_to_response(row: RequestResponseRow) -> RequestResponse:
    return RequestResponse(
        id=ResponseId(row.id),
        request_id=RequestId(row.request_id),
        donor_id=DonorId(row.donor_id),
        hospital_id=HospitalId(row.hospital_id),
        status=ResponseStatus(row.status),
        match_score=row.match_score,
        confirmation_code=row.confirmation_code,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
        eta_minutes=row.eta_minutes,
        scheduled_pickup_time=_utc(row.scheduled_pickup_time),
        confirmed_at=_utc(row.confirmed_at),
        rejection_reason=row.rejection_reason,
        blood_bag_id=row.blood_bag_id,
        version=row.version,
    )
