"""Donor Scoring — deterministic ranking of eligible donors against a request.

Invariants:
    - All functions are PURE: no IO, no async
    - compatibility_score in [0, 40], distance_score in [0, 30]
    - reliability_score is passed through exactly as the donor collaborator supplied it
    - Critical requests multiply the raw sum by 1.5, rounding half up
    - Ranking: final_score desc, distance asc (unknown distance last), donor_id asc

Design Decisions:
    - Compatibility is a fixed lookup, not a full ABO/Rh compatibility graph.
      Within Rh-negative recipients a donor of the same ABO group scores like an
      Rh-negative donor (O_POSITIVE -> O_NEGATIVE = 30)
    - Decimal for the 1.5 multiplier: float rounding would turn 82.5 into 82
"""

from decimal import Decimal, ROUND_HALF_UP

from lifeflow.core.domain_types import (
    BloodType, UrgencyLevel, is_critical, is_rh_negative, abo_group,
)
from lifeflow.core.request_models import EligibleDonor, MatchedDonor

EXACT_MATCH_SCORE = 40
COMPATIBLE_SCORE = 35
RH_NEGATIVE_SCORE = 30
FALLBACK_SCORE = 10

CRITICAL_MULTIPLIER = Decimal("1.5")
MAX_RANKED_DONORS = 10

# (max km inclusive, score); first matching band wins
_DISTANCE_BANDS: tuple[tuple[float, int], ...] = (
    (1.0, 30),
    (2.0, 25),
    (3.0, 20),
    (5.0, 15),
    (10.0, 10),
)
_FAR_SCORE = 5

_AB_POSITIVE_DONORS = frozenset({
    BloodType.O_POSITIVE, BloodType.A_POSITIVE, BloodType.B_POSITIVE,
})


def compatibility_score(recipient: BloodType, donor: BloodType) -> int:
    """Score how well a donor's type serves the recipient's type (0-40)."""
    if recipient == donor:
        return EXACT_MATCH_SCORE

    if donor == BloodType.O_POSITIVE and abo_group(recipient) != "O":
        return COMPATIBLE_SCORE

    if recipient == BloodType.AB_POSITIVE and donor in _AB_POSITIVE_DONORS:
        return COMPATIBLE_SCORE

    if is_rh_negative(recipient) and (
        is_rh_negative(donor) or abo_group(donor) == abo_group(recipient)
    ):
        return RH_NEGATIVE_SCORE

    return FALLBACK_SCORE


def distance_score(distance_km: float | None) -> int:
    """Closer is better (0-30). Unknown distance scores 0."""
    if distance_km is None:
        return 0
    for max_km, score in _DISTANCE_BANDS:
        if distance_km <= max_km:
            return score
    return _FAR_SCORE


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def final_score(
    compatibility: int, distance: int, reliability: int, urgency: UrgencyLevel,
) -> int:
    raw = compatibility + distance + reliability
    if is_critical(urgency):
        return round_half_up(Decimal(raw) * CRITICAL_MULTIPLIER)
    return raw


def score_donor(
    donor: EligibleDonor,
    recipient: BloodType,
    urgency: UrgencyLevel,
    distance_km: float | None,
) -> MatchedDonor:
    compat = compatibility_score(recipient, donor.blood_type)
    dist = distance_score(distance_km)
    return MatchedDonor(
        donor_id=donor.donor_id,
        blood_type=donor.blood_type,
        location=donor.location,
        distance_km=distance_km,
        compatibility_score=compat,
        distance_score=dist,
        reliability_score=donor.reliability_score,
        final_score=final_score(compat, dist, donor.reliability_score, urgency),
    )


def rank_donors(
    donors: list[MatchedDonor], limit: int = MAX_RANKED_DONORS,
) -> list[MatchedDonor]:
    """Sort best-first and truncate."""
    ordered = sorted(donors, key=_rank_key)
    return ordered[:limit]


def _rank_key(donor: MatchedDonor) -> tuple[int, float, str]:
    distance = donor.distance_km if donor.distance_km is not None else float("inf")
    return (-donor.final_score, distance, donor.donor_id)
