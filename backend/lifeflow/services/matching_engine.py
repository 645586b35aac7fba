"""Matching Engine — ranks eligible donors for a blood request under time pressure.

Invariants:
    - Collaborators are reached only through DownstreamGateway
    - Returns at most max_results donors, or an empty list with stock_sufficient=True
    - A DownstreamUnavailableError drops only that call's contribution and marks the
      result degraded: stock failure -> assume insufficient, donor failure -> no
      candidates, distance failure -> distance unknown (score 0)
    - The cancellation event is checked between downstream calls; once set, the
      partial ranking computed so far is returned with cancelled=True
    - Never raises for downstream trouble and never retains MatchedDonor lists

Design Decisions:
    - Stock check and donor lookup issued concurrently (asyncio.gather)
    - Distance lookups fan out under an asyncio.Semaphore so one request cannot
      flood the geolocation service
    - Scoring itself lives in core/scoring.py (pure, tested without mocks)
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any

from lifeflow.core.errors import DownstreamUnavailableError
from lifeflow.core.request_models import (
    BloodRequest, EligibleDonor, MatchResult,
)
from lifeflow.core.scoring import MAX_RANKED_DONORS, rank_donors, score_donor
from lifeflow.infrastructure.downstream_gateway import DownstreamGateway

logger = logging.getLogger(__name__)

_FAILED = object()


class MatchingEngine:

    def __init__(
        self,
        gateway: DownstreamGateway,
        max_results: int = MAX_RANKED_DONORS,
        max_concurrency: int = 8,
    ):
        self._gateway = gateway
        self._max_results = max_results
        self._max_concurrency = max(1, max_concurrency)

    async def find_matches(
        self,
        request: BloodRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> MatchResult:
        """Check stock, fetch eligible donors, score and rank them."""
        cancel = cancel_event or asyncio.Event()
        log_extra = {"request_id": request.id}
        logger.info(
            f"Starting donor matching for {request.blood_type.value} "
            f"x{request.units_required}",
            extra=log_extra,
        )

        stock, donors = await asyncio.gather(
            self._guarded(
                self._gateway.check_stock(request.blood_type, request.units_required),
                request, "stock check",
            ),
            self._guarded(
                self._gateway.find_eligible_donors(
                    request.blood_type, request.units_required,
                ),
                request, "donor lookup",
            ),
        )
        degraded = stock is _FAILED or donors is _FAILED

        if stock is True:
            logger.info("Stock available in inventory, skipping donors", extra=log_extra)
            return MatchResult(stock_sufficient=True, degraded=degraded)

        if cancel.is_set():
            logger.info("Matching cancelled after stock/donor lookup", extra=log_extra)
            return MatchResult(degraded=degraded, cancelled=True)

        candidates: list[EligibleDonor] = [] if donors is _FAILED else list(donors)
        if not candidates:
            logger.warning(
                "No donors found" + (" (downstream degraded)" if degraded else ""),
                extra=log_extra,
            )
            return MatchResult(degraded=degraded)

        distances, distance_failures = await self._lookup_distances(
            request, candidates, cancel,
        )
        degraded = degraded or distance_failures > 0

        scored = [
            score_donor(donor, request.blood_type, request.urgency, distances[i])
            for i, donor in enumerate(candidates)
        ]
        ranked = rank_donors(scored, self._max_results)
        logger.info(
            f"Ranked {len(ranked)} of {len(candidates)} eligible donors",
            extra=log_extra,
        )
        return MatchResult(
            donors=ranked, degraded=degraded, cancelled=cancel.is_set(),
        )

    async def _lookup_distances(
        self,
        request: BloodRequest,
        candidates: list[EligibleDonor],
        cancel: asyncio.Event,
    ) -> tuple[list[float | None], int]:
        distances: list[float | None] = [None] * len(candidates)
        if not request.hospital_location:
            return distances, 0

        semaphore = asyncio.Semaphore(self._max_concurrency)
        failures = 0

        async def lookup(index: int, donor: EligibleDonor) -> None:
            nonlocal failures
            async with semaphore:
                if cancel.is_set():
                    return
                result = await self._guarded(
                    self._gateway.distance(donor.location, request.hospital_location),
                    request, f"distance lookup for donor {donor.donor_id}",
                )
                if result is _FAILED:
                    failures += 1
                else:
                    distances[index] = result

        await asyncio.gather(*(
            lookup(i, donor)
            for i, donor in enumerate(candidates)
            if donor.location
        ))
        return distances, failures

    async def _guarded(
        self, call: Awaitable[Any], request: BloodRequest, what: str,
    ) -> Any:
        try:
            return await call
        except DownstreamUnavailableError as e:
            logger.warning(
                f"Matching degraded, {what} unavailable: {e.reason}",
                extra={
                    "request_id": request.id,
                    "collaborator": e.collaborator,
                    "error_code": e.code,
                },
            )
            return _FAILED
