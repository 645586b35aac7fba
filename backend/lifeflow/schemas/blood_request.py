"""Blood Request Schemas — Pydantic models for the HTTP boundary.

Invariants:
    - Request bodies check shape only (types, bounds); the lifecycle re-validates
      everything through core/validate_request.py
    - Response models are built from frozen domain records via from_record()
    - Enum fields serialize as their string values

Design Decisions:
    - str fields for blood_type/urgency on input: unknown values surface as the
      lifecycle's ValidationError (field-named) rather than a generic enum error
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from lifeflow.core.domain_types import (
    MAX_DEADLINE_MINUTES, MIN_DEADLINE_MINUTES, MIN_UNITS_REQUIRED,
)
from lifeflow.core.request_models import (
    BloodRequest, MatchedDonor, MatchResult, RequestResponse, RequestSpec,
)


class RequestCreate(BaseModel):
    """Emergency request creation."""
    hospital_id: str = Field(min_length=1, max_length=64)
    blood_type: str
    units_required: float = Field(ge=MIN_UNITS_REQUIRED)
    urgency: str
    deadline_minutes: int = Field(ge=MIN_DEADLINE_MINUTES, le=MAX_DEADLINE_MINUTES)
    patient_age: int | None = Field(None, ge=1)
    patient_condition: str | None = Field(None, max_length=500)
    procedure_type: str | None = Field(None, max_length=100)
    hospital_location: str | None = Field(None, max_length=100)

    @field_validator("hospital_id")
    @classmethod
    def strip_hospital_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("hospital_id cannot be empty or whitespace")
        return v

    def to_spec(self) -> RequestSpec:
        return RequestSpec(**self.model_dump())


class AcceptBody(BaseModel):
    eta_minutes: int = Field(ge=0)


class RejectBody(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class CancelBody(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class FulfillBody(BaseModel):
    units_delivered: float = Field(ge=0)
    blood_bag_id: str | None = Field(None, max_length=64)


class RequestOut(BaseModel):
    id: str
    hospital_id: str
    blood_type: str
    units_required: float
    urgency: str
    urgency_score: int
    deadline_minutes: int
    deadline: datetime
    status: str
    created_at: datetime
    updated_at: datetime
    patient_age: int | None = None
    patient_condition: str | None = None
    procedure_type: str | None = None
    hospital_location: str | None = None
    fulfilled_from_stock: bool = False
    units_delivered: float | None = None
    fulfilled_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    expired_at: datetime | None = None

    @classmethod
    def from_record(cls, request: BloodRequest) -> "RequestOut":
        return cls(
            id=request.id,
            hospital_id=request.hospital_id,
            blood_type=request.blood_type.value,
            units_required=request.units_required,
            urgency=request.urgency.value,
            urgency_score=request.urgency_score,
            deadline_minutes=request.deadline_minutes,
            deadline=request.deadline,
            status=request.status.value,
            created_at=request.created_at,
            updated_at=request.updated_at,
            patient_age=request.patient_age,
            patient_condition=request.patient_condition,
            procedure_type=request.procedure_type,
            hospital_location=request.hospital_location,
            fulfilled_from_stock=request.fulfilled_from_stock,
            units_delivered=request.units_delivered,
            fulfilled_at=request.fulfilled_at,
            cancelled_at=request.cancelled_at,
            cancellation_reason=request.cancellation_reason,
            expired_at=request.expired_at,
        )


class ResponseOut(BaseModel):
    id: str
    request_id: str
    donor_id: str
    status: str
    match_score: int
    confirmation_code: str
    eta_minutes: int | None = None
    scheduled_pickup_time: datetime | None = None
    confirmed_at: datetime | None = None
    rejection_reason: str | None = None
    blood_bag_id: str | None = None

    @classmethod
    def from_record(cls, response: RequestResponse) -> "ResponseOut":
        return cls(
            id=response.id,
            request_id=response.request_id,
            donor_id=response.donor_id,
            status=response.status.value,
            match_score=response.match_score,
            confirmation_code=response.confirmation_code,
            eta_minutes=response.eta_minutes,
            scheduled_pickup_time=response.scheduled_pickup_time,
            confirmed_at=response.confirmed_at,
            rejection_reason=response.rejection_reason,
            blood_bag_id=response.blood_bag_id,
        )


class MatchedDonorOut(BaseModel):
    donor_id: str
    blood_type: str
    distance_km: float | None
    compatibility_score: int
    distance_score: int
    reliability_score: int
    final_score: int

    @classmethod
    def from_record(cls, donor: MatchedDonor) -> "MatchedDonorOut":
        return cls(
            donor_id=donor.donor_id,
            blood_type=donor.blood_type.value,
            distance_km=donor.distance_km,
            compatibility_score=donor.compatibility_score,
            distance_score=donor.distance_score,
            reliability_score=donor.reliability_score,
            final_score=donor.final_score,
        )


class MatchResultOut(BaseModel):
    outcome: str
    stock_sufficient: bool
    degraded: bool
    donors: list[MatchedDonorOut]

    @classmethod
    def from_result(cls, result: MatchResult) -> "MatchResultOut":
        return cls(
            outcome=result.outcome,
            stock_sufficient=result.stock_sufficient,
            degraded=result.degraded,
            donors=[MatchedDonorOut.from_record(d) for d in result.donors],
        )
