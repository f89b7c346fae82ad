"""
HTTP surface tests: routing, role guards, error bodies and public tracking.
"""

import pytest

from courier_backend.tests.stubs import SAMPLE_POLYLINE_POINTS


def parcel_payload(**overrides):
    payload = {
        "receiver_email": "receiver@courier-mail.com",
        "description": "Printer",
        "weight": 20,
        "pickup_location": "Westlands",
        "destination_location": "Karen",
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["queue"] == "up"
    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_create_parcel_is_admin_only(client, sender, receiver, admin, auth_headers):
    denied = await client.post("/v1/parcels", json=parcel_payload(), headers=auth_headers(sender))
    assert denied.status_code == 403

    created = await client.post("/v1/parcels", json=parcel_payload(), headers=auth_headers(admin))
    assert created.status_code == 201, created.text
    body = created.json()
    assert body["price"] == 160.0
    assert body["weight_category"] == "Medium (5-20kg)"
    assert body["receiver"]["email"] == receiver.email


@pytest.mark.asyncio
async def test_status_endpoints(client, receiver, admin, auth_headers):
    parcel = (await client.post("/v1/parcels", json=parcel_payload(), headers=auth_headers(admin))).json()
    url = f"/v1/parcels/{parcel['id']}"

    denied = await client.patch(f"{url}/status", json={"status": "IN_TRANSIT"}, headers=auth_headers(receiver))
    assert denied.status_code == 403

    conflict = await client.patch(f"{url}/status", json={"status": "DELIVERED"}, headers=auth_headers(admin))
    assert conflict.status_code == 409
    assert conflict.json()["error_code"] == "ERR_CONFLICT_001"

    invalid = await client.patch(f"{url}/status", json={"status": "LOST"}, headers=auth_headers(admin))
    assert invalid.status_code == 422

    for status in ("IN_TRANSIT", "DELIVERED"):
        response = await client.patch(f"{url}/status", json={"status": status}, headers=auth_headers(admin))
        assert response.status_code == 200, response.text

    delivered = (await client.get(url, headers=auth_headers(receiver))).json()
    assert delivered["payment"]["amount"] == 160.0
    assert delivered["payment"]["status"] == "COMPLETED"

    # RECEIVED belongs to the receiver, even for an admin on a delivered parcel
    forced = await client.patch(f"{url}/status", json={"status": "RECEIVED"}, headers=auth_headers(admin))
    assert forced.status_code == 403
    assert forced.json()["error_code"] == "ERR_PERM_001"

    received = await client.patch(f"{url}/received", headers=auth_headers(receiver))
    assert received.status_code == 200
    assert received.json()["status"] == "RECEIVED"


@pytest.mark.asyncio
async def test_bulk_status_endpoint(client, receiver, admin, auth_headers):
    ids = []
    for _ in range(2):
        ids.append((await client.post("/v1/parcels", json=parcel_payload(), headers=auth_headers(admin))).json()["id"])

    response = await client.put(
        "/v1/parcels/bulk-update-status",
        json={"parcel_ids": ids, "status": "IN_TRANSIT"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["updated_count"] == 2

    empty = await client.put(
        "/v1/parcels/bulk-update-status",
        json={"parcel_ids": [], "status": "IN_TRANSIT"},
        headers=auth_headers(admin),
    )
    assert empty.status_code == 422


@pytest.mark.asyncio
async def test_public_tracking(client, receiver, admin, auth_headers):
    parcel = (await client.post("/v1/parcels", json=parcel_payload(), headers=auth_headers(admin))).json()

    tracked = await client.get(f"/v1/tracking/{parcel['tracking_number']}")
    assert tracked.status_code == 200
    body = tracked.json()
    assert body["status"] == "PICKED_UP"
    assert [tuple(point) for point in body["route_polyline"]] == [pytest.approx(p) for p in SAMPLE_POLYLINE_POINTS]

    missing = await client.get("/v1/tracking/PCL-0ZZZZ")
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_search_endpoint(client, receiver, sender, admin, auth_headers):
    await client.post("/v1/parcels", json=parcel_payload(), headers=auth_headers(admin))

    as_receiver = (await client.get("/v1/parcels", headers=auth_headers(receiver))).json()
    assert as_receiver["pagination"]["total"] == 1

    as_sender = (await client.get("/v1/parcels", headers=auth_headers(sender))).json()
    assert as_sender["pagination"]["total"] == 0

    filtered = (await client.get(
        "/v1/parcels", params={"status": "DELIVERED"}, headers=auth_headers(admin)
    )).json()
    assert filtered["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_delete_parcel_endpoint(client, receiver, admin, auth_headers):
    parcel = (await client.post("/v1/parcels", json=parcel_payload(), headers=auth_headers(admin))).json()

    denied = await client.delete(f"/v1/parcels/{parcel['id']}", headers=auth_headers(receiver))
    assert denied.status_code == 403

    deleted = await client.delete(f"/v1/parcels/{parcel['id']}", headers=auth_headers(admin))
    assert deleted.status_code == 200

    gone = await client.get(f"/v1/parcels/{parcel['id']}", headers=auth_headers(admin))
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_invalid_token(client):
    response = await client.get("/v1/parcels", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_map_lookups_are_public(client, maps_stub):
    forward = await client.get("/v1/maps/geocode", params={"address": "Westlands"})
    assert forward.status_code == 200
    assert forward.json()["formatted_address"] == "Westlands, Kenya"

    reverse = await client.get("/v1/maps/reverse-geocode", params={"latitude": -1.2921, "longitude": 36.8219})
    assert reverse.status_code == 200
    assert reverse.json()["formatted_address"] == "-1.2921,36.8219, Kenya"
    assert reverse.json()["latitude"] == -1.2921

    distance = await client.get("/v1/maps/distance", params={"origin": "Westlands", "destination": "Karen Road"})
    assert distance.json() == {"distance_km": 12.5, "duration_hours": 2}

    straight = await client.post(
        "/v1/maps/haversine-distance",
        json={"lat1": -1.2864, "lng1": 36.8172, "lat2": -1.3192, "lng2": 36.9278},
    )
    assert straight.status_code == 200
    assert 12 < straight.json()["distance_km"] < 13


@pytest.mark.asyncio
async def test_map_lookup_failures(client, maps_stub):
    out_of_range = await client.get("/v1/maps/reverse-geocode", params={"latitude": 91, "longitude": 0})
    assert out_of_range.status_code == 422

    maps_stub.fail = True
    failed = await client.get("/v1/maps/geocode", params={"address": "Westlands"})
    assert failed.status_code == 400
    assert failed.json()["details"]["reason"] == "OVER_QUERY_LIMIT"

    no_route = await client.get("/v1/maps/distance", params={"origin": "Westlands", "destination": "Karen Road"})
    assert no_route.status_code == 400
