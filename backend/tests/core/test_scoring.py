"""Scoring tests — pure tests for compatibility, distance bands, final score and ranking."""

import pytest

from lifeflow.core.domain_types import BloodType, UrgencyLevel
from lifeflow.core.request_models import EligibleDonor, MatchedDonor
from lifeflow.core.scoring import (
    compatibility_score,
    distance_score,
    final_score,
    rank_donors,
    score_donor,
)


def _matched(donor_id, final, distance=None) -> MatchedDonor:
    return MatchedDonor(
        donor_id=donor_id,
        blood_type=BloodType.O_NEGATIVE,
        location=None,
        distance_km=distance,
        compatibility_score=40,
        distance_score=0,
        reliability_score=0,
        final_score=final,
    )


# --- Compatibility ------------------------------------------------------------

@pytest.mark.parametrize("blood_type", list(BloodType))
def test_exact_match_scores_40(blood_type):
    assert compatibility_score(blood_type, blood_type) == 40


@pytest.mark.parametrize("recipient,donor,expected", [
    (BloodType.A_POSITIVE, BloodType.O_POSITIVE, 35),
    (BloodType.AB_NEGATIVE, BloodType.O_POSITIVE, 35),
    (BloodType.AB_POSITIVE, BloodType.A_POSITIVE, 35),
    (BloodType.AB_POSITIVE, BloodType.B_POSITIVE, 35),
    (BloodType.A_NEGATIVE, BloodType.O_NEGATIVE, 30),
    (BloodType.B_NEGATIVE, BloodType.A_NEGATIVE, 30),
    (BloodType.O_NEGATIVE, BloodType.O_POSITIVE, 30),
    (BloodType.O_NEGATIVE, BloodType.A_POSITIVE, 10),
    (BloodType.B_POSITIVE, BloodType.A_POSITIVE, 10),
    (BloodType.O_POSITIVE, BloodType.AB_POSITIVE, 10),
])
def test_compatibility_table(recipient, donor, expected):
    assert compatibility_score(recipient, donor) == expected


def test_compatibility_stays_in_range():
    for recipient in BloodType:
        for donor in BloodType:
            assert 0 <= compatibility_score(recipient, donor) <= 40


# --- Distance -----------------------------------------------------------------

@pytest.mark.parametrize("km,expected", [
    (0.0, 30), (1.0, 30), (1.5, 25), (2.0, 25), (2.5, 20), (3.0, 20),
    (4.0, 15), (5.0, 15), (7.5, 10), (10.0, 10), (10.1, 5), (250.0, 5),
])
def test_distance_bands(km, expected):
    assert distance_score(km) == expected


def test_unknown_distance_scores_zero():
    assert distance_score(None) == 0


# --- Final score --------------------------------------------------------------

@pytest.mark.parametrize("urgency", [
    UrgencyLevel.HIGH, UrgencyLevel.MEDIUM, UrgencyLevel.LOW,
])
def test_non_critical_is_plain_sum(urgency):
    assert final_score(30, 15, 10, urgency) == 55


def test_critical_rounds_half_up():
    assert final_score(30, 15, 10, UrgencyLevel.CRITICAL) == 83
    assert final_score(40, 30, 20, UrgencyLevel.CRITICAL) == 135
    assert final_score(10, 5, 5, UrgencyLevel.CRITICAL) == 30


def test_reliability_passed_through():
    donor = EligibleDonor("d-1", BloodType.A_POSITIVE, "loc", reliability_score=17)
    scored = score_donor(donor, BloodType.A_POSITIVE, UrgencyLevel.LOW, 0.4)

    assert scored.reliability_score == 17
    assert scored.final_score == 40 + 30 + 17


# --- Ranking ------------------------------------------------------------------

def test_rank_orders_by_score_then_distance_then_id():
    donors = [
        _matched("d-c", 50, distance=3.0),
        _matched("d-b", 50, distance=None),
        _matched("d-a", 50, distance=3.0),
        _matched("d-z", 80, distance=9.0),
        _matched("d-y", 50, distance=1.0),
    ]
    ranked = rank_donors(donors)

    assert [d.donor_id for d in ranked] == ["d-z", "d-y", "d-a", "d-c", "d-b"]


def test_rank_truncates_to_limit():
    donors = [_matched(f"d-{i:02d}", i) for i in range(25)]

    ranked = rank_donors(donors)

    assert len(ranked) == 10
    assert ranked[0].final_score == 24
