"""HTTP collaborator client tests — request shapes and status mapping over httpx.MockTransport."""

import httpx
import pytest

from lifeflow.core.domain_types import BloodType
from lifeflow.core.errors import CollaboratorInputError
from lifeflow.infrastructure.http_collaborators import (
    HttpDonorClient,
    HttpGeolocationClient,
    HttpInventoryClient,
    HttpNotificationClient,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://collaborator",
    )


async def test_inventory_check_stock_query():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"available": True})

    async with _client(handler) as client:
        assert await HttpInventoryClient(client).check_stock(BloodType.O_NEGATIVE, 2) is True

    assert seen["path"] == "/api/v1/inventory/check-stock"
    assert seen["params"]["bloodType"] == "O_NEGATIVE"


async def test_donor_records_parsed_and_bad_types_skipped():
    def handler(request):
        return httpx.Response(200, json=[
            {"donorId": "d-1", "bloodType": "O_NEGATIVE", "location": "a", "reliabilityScore": 18},
            {"donorId": "d-2", "bloodType": "Z_POSITIVE", "location": "b"},
        ])

    async with _client(handler) as client:
        donors = await HttpDonorClient(client).find_eligible(BloodType.O_NEGATIVE, 1)

    assert [d.donor_id for d in donors] == ["d-1"]
    assert donors[0].reliability_score == 18


async def test_donor_records_without_id_or_whole_reliability_skipped():
    def handler(request):
        return httpx.Response(200, json=[
            {"bloodType": "O_NEGATIVE", "location": "a", "reliabilityScore": 12},
            {"donorId": "d-2", "bloodType": "O_NEGATIVE", "reliabilityScore": 17.6},
            {"donorId": "d-3", "bloodType": "O_NEGATIVE", "reliabilityScore": 15.0},
        ])

    async with _client(handler) as client:
        donors = await HttpDonorClient(client).find_eligible(BloodType.O_NEGATIVE, 1)

    assert [(d.donor_id, d.reliability_score) for d in donors] == [("d-3", 15)]


async def test_geolocation_distance_from_object_body():
    def handler(request):
        return httpx.Response(200, json={"distanceKm": 3.4})

    async with _client(handler) as client:
        assert await HttpGeolocationClient(client).distance("a", "b") == 3.4


async def test_4xx_maps_to_collaborator_input_error():
    def handler(request):
        return httpx.Response(422, json={"error": "unknown donor"})

    async with _client(handler) as client:
        with pytest.raises(CollaboratorInputError) as exc:
            await HttpNotificationClient(client).send("d-1", {"type": "BLOOD_REQUEST"})

    assert exc.value.collaborator == "notification"


async def test_5xx_raises_http_status_error():
    def handler(request):
        return httpx.Response(503)

    async with _client(handler) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await HttpInventoryClient(client).check_stock(BloodType.A_POSITIVE, 1)
