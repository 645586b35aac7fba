"""Input Validation — explicit validators run at the lifecycle boundary.

Invariants:
    - All functions are PURE: no IO, no side effects
    - Every failure raises ValidationError naming the offending field
    - Validation happens before any state mutation or persistence

Design Decisions:
    - Free functions over annotation-driven validation: the lifecycle is callable
      without the HTTP layer, so it cannot rely on Pydantic having run first
"""

import math

from lifeflow.core.domain_types import (
    BloodType, UrgencyLevel, HospitalId,
    MIN_DEADLINE_MINUTES, MAX_DEADLINE_MINUTES, MIN_UNITS_REQUIRED,
)
from lifeflow.core.errors import ValidationError
from lifeflow.core.request_models import RequestSpec, ValidatedSpec


def validate_create_spec(spec: RequestSpec) -> ValidatedSpec:
    """Validate creation input and coerce enum fields."""
    hospital_id = _require_text(spec.hospital_id, "hospital_id")
    blood_type = _parse_enum(BloodType, spec.blood_type, "blood_type")
    urgency = _parse_enum(UrgencyLevel, spec.urgency, "urgency")
    units = validate_units_required(spec.units_required)
    deadline_minutes = validate_deadline_minutes(spec.deadline_minutes)

    if spec.patient_age is not None and (
        isinstance(spec.patient_age, bool) or not isinstance(spec.patient_age, int)
        or spec.patient_age < 1
    ):
        raise ValidationError("Patient age must be a positive integer", "patient_age")

    return ValidatedSpec(
        hospital_id=HospitalId(hospital_id),
        blood_type=blood_type,
        units_required=units,
        urgency=urgency,
        deadline_minutes=deadline_minutes,
        patient_age=spec.patient_age,
        patient_condition=_optional_text(spec.patient_condition),
        procedure_type=_optional_text(spec.procedure_type),
        hospital_location=_optional_text(spec.hospital_location),
    )


def validate_deadline_minutes(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Deadline minutes must be an integer", "deadline_minutes")
    if value < MIN_DEADLINE_MINUTES:
        raise ValidationError(
            f"Minimum deadline is {MIN_DEADLINE_MINUTES} minutes", "deadline_minutes",
        )
    if value > MAX_DEADLINE_MINUTES:
        raise ValidationError(
            f"Maximum deadline is {MAX_DEADLINE_MINUTES} minutes (24 hours)",
            "deadline_minutes",
        )
    return value


def validate_units_required(value: object) -> float:
    units = _as_number(value, "units_required")
    if units < MIN_UNITS_REQUIRED:
        raise ValidationError(
            f"Units must be at least {MIN_UNITS_REQUIRED}", "units_required",
        )
    return units


def validate_units_delivered(value: object) -> float:
    units = _as_number(value, "units_delivered")
    if units < 0:
        raise ValidationError("Units delivered cannot be negative", "units_delivered")
    return units


def validate_eta_minutes(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError("ETA must be a non-negative integer", "eta_minutes")
    return value


def validate_reason(value: object, field: str = "reason") -> str:
    return _require_text(value, field)


# --- Helpers ------------------------------------------------------------------

def _require_text(value: object, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field)
    return value.strip()


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_enum(enum_cls, value: object, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Expected one of: {allowed}", field)


def _as_number(value: object, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number", field)
    number = float(value)
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field} must be finite", field)
    return number
