"""Domain Types — enums, identity types and predicates for the request lifecycle.

Invariants:
    - RequestId, ResponseId, DonorId wrap str — never pass bare ids across layers
    - All valid states encoded as Enums — no raw string matching
    - Enums carry no behavior; predicates are free functions (is_critical, is_terminal)

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON and DB String columns without custom encoders
"""

from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

RequestId = NewType("RequestId", str)
ResponseId = NewType("ResponseId", str)
DonorId = NewType("DonorId", str)
HospitalId = NewType("HospitalId", str)


# ─── Bounds ──────────────────────────────────────────────────────

MIN_DEADLINE_MINUTES = 5
MAX_DEADLINE_MINUTES = 1440
MIN_UNITS_REQUIRED = 0.1


# ─── Enums ───────────────────────────────────────────────────────

class BloodType(str, Enum):
    """ABO/Rh blood groups accepted on a request."""
    O_POSITIVE = "O_POSITIVE"
    O_NEGATIVE = "O_NEGATIVE"
    A_POSITIVE = "A_POSITIVE"
    A_NEGATIVE = "A_NEGATIVE"
    B_POSITIVE = "B_POSITIVE"
    B_NEGATIVE = "B_NEGATIVE"
    AB_POSITIVE = "AB_POSITIVE"
    AB_NEGATIVE = "AB_NEGATIVE"


class UrgencyLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


URGENCY_WEIGHTS: dict[UrgencyLevel, int] = {
    UrgencyLevel.CRITICAL: 100,
    UrgencyLevel.HIGH: 75,
    UrgencyLevel.MEDIUM: 50,
    UrgencyLevel.LOW: 25,
}


class RequestStatus(str, Enum):
    """Blood request lifecycle states — maps to DB `status` column."""
    PENDING = "PENDING"
    MATCHED = "MATCHED"
    ACCEPTED = "ACCEPTED"
    FULFILLED = "FULFILLED"
    PARTIAL_FULFILLED = "PARTIAL_FULFILLED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset({
    RequestStatus.FULFILLED,
    RequestStatus.PARTIAL_FULFILLED,
    RequestStatus.CANCELLED,
    RequestStatus.EXPIRED,
})

ACTIVE_STATUSES = frozenset({
    RequestStatus.PENDING,
    RequestStatus.MATCHED,
    RequestStatus.ACCEPTED,
})


class ResponseStatus(str, Enum):
    """A donor's reply to a request."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    NO_RESPONSE = "NO_RESPONSE"
    CANCELLED = "CANCELLED"


OPEN_RESPONSE_STATUSES = frozenset({
    ResponseStatus.PENDING,
    ResponseStatus.ACCEPTED,
})


class Collaborator(str, Enum):
    """Downstream services reached through the gateway. Value = breaker name."""
    INVENTORY = "inventory"
    DONOR = "donor"
    GEOLOCATION = "geolocation"
    NOTIFICATION = "notification"
    ANALYTICS = "analytics"


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class EventType(str, Enum):
    """Lifecycle event discriminant."""
    BLOOD_NEEDED = "BLOOD_NEEDED"
    DONOR_ACCEPTED = "DONOR_ACCEPTED"
    REQUEST_FULFILLED = "REQUEST_FULFILLED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    REQUEST_EXPIRED = "REQUEST_EXPIRED"


# ─── Predicates ──────────────────────────────────────────────────

def is_critical(urgency: UrgencyLevel) -> bool:
    return urgency == UrgencyLevel.CRITICAL


def is_terminal(status: RequestStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_rh_negative(blood_type: BloodType) -> bool:
    return blood_type.value.endswith("NEGATIVE")


def abo_group(blood_type: BloodType) -> str:
    """ABO part of the type: O_NEGATIVE -> 'O', AB_POSITIVE -> 'AB'."""
    return blood_type.value.split("_", 1)[0]


def urgency_weight(urgency: UrgencyLevel) -> int:
    return URGENCY_WEIGHTS[urgency]
