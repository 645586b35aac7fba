"""Request Models — immutable domain records for requests, responses and matches.

Invariants:
    - BloodRequest and RequestResponse are frozen: a transition produces a new record
      via dataclasses.replace, never an in-place mutation
    - RequestResponse references its request by id only (no object graph)
    - MatchedDonor and MatchResult are ephemeral — never persisted
    - version is the optimistic-concurrency counter owned by the store

Design Decisions:
    - Plain dataclasses, not ORM rows: core stays free of SQLAlchemy
    - RequestSpec is the raw creation input; validate_request turns it into ValidatedSpec
"""

from dataclasses import dataclass, field
from datetime import datetime

from lifeflow.core.domain_types import (
    BloodType, UrgencyLevel, RequestStatus, ResponseStatus,
    RequestId, ResponseId, DonorId, HospitalId,
)


@dataclass(frozen=True)
class RequestSpec:
    """Unvalidated creation input as received from the service boundary."""
    hospital_id: str
    blood_type: str
    units_required: float
    urgency: str
    deadline_minutes: int
    patient_age: int | None = None
    patient_condition: str | None = None
    procedure_type: str | None = None
    hospital_location: str | None = None


@dataclass(frozen=True)
class ValidatedSpec:
    hospital_id: HospitalId
    blood_type: BloodType
    units_required: float
    urgency: UrgencyLevel
    deadline_minutes: int
    patient_age: int | None = None
    patient_condition: str | None = None
    procedure_type: str | None = None
    hospital_location: str | None = None


@dataclass(frozen=True)
class BloodRequest:
    """A hospital's ask for blood units within a deadline."""
    id: RequestId
    hospital_id: HospitalId
    blood_type: BloodType
    units_required: float
    urgency: UrgencyLevel
    urgency_score: int
    deadline_minutes: int
    deadline: datetime
    status: RequestStatus
    created_at: datetime
    updated_at: datetime
    patient_age: int | None = None
    patient_condition: str | None = None
    procedure_type: str | None = None
    hospital_location: str | None = None
    stock_checked: bool = False
    donor_search_initiated: bool = False
    fulfilled_from_stock: bool = False
    units_delivered: float | None = None
    fulfilled_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    expired_at: datetime | None = None
    version: int = 0


@dataclass(frozen=True)
class RequestResponse:
    """A single donor's reply to a request."""
    id: ResponseId
    request_id: RequestId
    donor_id: DonorId
    hospital_id: HospitalId
    status: ResponseStatus
    match_score: int
    confirmation_code: str
    created_at: datetime
    updated_at: datetime
    eta_minutes: int | None = None
    scheduled_pickup_time: datetime | None = None
    confirmed_at: datetime | None = None
    rejection_reason: str | None = None
    blood_bag_id: str | None = None
    version: int = 0


@dataclass(frozen=True)
class EligibleDonor:
    """Donor record as returned by the donor collaborator."""
    donor_id: DonorId
    blood_type: BloodType
    location: str | None
    reliability_score: int


@dataclass(frozen=True)
class MatchedDonor:
    donor_id: DonorId
    blood_type: BloodType
    location: str | None
    distance_km: float | None
    compatibility_score: int
    distance_score: int
    reliability_score: int
    final_score: int


@dataclass(frozen=True)
class MatchResult:
    """Outcome of one matching call."""
    donors: list[MatchedDonor] = field(default_factory=list)
    stock_sufficient: bool = False
    degraded: bool = False
    cancelled: bool = False

    @property
    def outcome(self) -> str:
        if self.stock_sufficient:
            return "use_stock"
        if self.donors:
            return "matched"
        if self.degraded:
            return "degraded"
        return "no_donors"
