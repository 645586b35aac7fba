"""HTTP Collaborator Clients — httpx implementations of the collaborator protocols.

Invariants:
    - Clients do no retrying, no timeouts beyond httpx's own, no breaker logic:
      DownstreamGateway owns all of that
    - HTTP 4xx raises CollaboratorInputError (our input was wrong, do not retry)
    - HTTP 5xx and transport errors propagate as httpx exceptions
    - JSON payloads use the collaborators' camelCase field names

Design Decisions:
    - One shared AsyncClient per collaborator (connection pooling), owned by main.py
"""

import logging

import httpx

from lifeflow.core.domain_types import BloodType, Collaborator, DonorId
from lifeflow.core.errors import CollaboratorInputError
from lifeflow.core.request_models import EligibleDonor

logger = logging.getLogger(__name__)


def _check_response(collaborator: Collaborator, response: httpx.Response) -> None:
    """Map 4xx to CollaboratorInputError; raise for 5xx."""
    if 400 <= response.status_code < 500:
        raise CollaboratorInputError(
            collaborator.value, f"HTTP {response.status_code}: {response.text[:200]}",
        )
    response.raise_for_status()


class HttpInventoryClient:
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def check_stock(self, blood_type: BloodType, units: float) -> bool:
        response = await self._client.get(
            "/api/v1/inventory/check-stock",
            params={"bloodType": blood_type.value, "units": units},
        )
        _check_response(Collaborator.INVENTORY, response)
        body = response.json()
        if isinstance(body, dict):
            return bool(body.get("available", body.get("sufficient", False)))
        return bool(body)


class HttpDonorClient:
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def find_eligible(
        self, blood_type: BloodType, units: float,
    ) -> list[EligibleDonor]:
        response = await self._client.get(
            "/api/v1/donors/eligible",
            params={"bloodType": blood_type.value, "units": units},
        )
        _check_response(Collaborator.DONOR, response)
        donors = []
        for item in response.json():
            donor = _parse_donor(item)
            if donor is not None:
                donors.append(donor)
        return donors


class HttpGeolocationClient:
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def distance(self, origin: str, destination: str) -> float:
        response = await self._client.get(
            "/api/v1/geo/distance",
            params={"origin": origin, "destination": destination},
        )
        _check_response(Collaborator.GEOLOCATION, response)
        body = response.json()
        if isinstance(body, dict):
            body = body["distanceKm"]
        return float(body)


class HttpNotificationClient:
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def send(self, donor_id: str, payload: dict) -> None:
        response = await self._client.post(
            "/api/v1/notifications/send",
            json={"recipientId": donor_id, **payload},
        )
        _check_response(Collaborator.NOTIFICATION, response)


class HttpAnalyticsClient:
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def record(self, event_type: str, payload: dict) -> None:
        response = await self._client.post(
            "/api/v1/analytics/events",
            json={"eventType": event_type, "payload": payload},
        )
        _check_response(Collaborator.ANALYTICS, response)


def _parse_donor(item: dict) -> EligibleDonor | None:
    """Parse one donor record; skip (and log) records this service cannot score."""
    donor_id = item.get("donorId") or item.get("id")
    log_extra = {"donor_id": donor_id, "collaborator": Collaborator.DONOR.value}
    if donor_id is None:
        logger.warning("Skipping donor record without an id", extra=log_extra)
        return None
    try:
        blood_type = BloodType(item["bloodType"])
    except (KeyError, ValueError):
        logger.warning(
            f"Skipping donor with unusable blood type: {item.get('bloodType')}",
            extra=log_extra,
        )
        return None
    reliability = item.get("reliabilityScore") or 0
    if (
        isinstance(reliability, bool)
        or not isinstance(reliability, (int, float))
        or not float(reliability).is_integer()
    ):
        logger.warning(
            f"Skipping donor with unusable reliability score: {reliability!r}",
            extra=log_extra,
        )
        return None
    return EligibleDonor(
        donor_id=DonorId(str(donor_id)),
        blood_type=blood_type,
        location=item.get("location") or item.get("donorLocation"),
        reliability_score=int(reliability),
    )
