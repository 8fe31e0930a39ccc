"""
Integration tests for the REST and WebSocket endpoints.

The app is built around an ``InMemoryDocumentStore`` so the routes run
the real services without PostgreSQL or Redis.  The lifespan (expiry
worker) is not started by ``ASGITransport``.  WebSocket tests use the
synchronous ``TestClient`` so HTTP calls and sockets share one event loop.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketDisconnect

from ladies_drive.api.app import create_app
from ladies_drive.api.middleware import limiter
from ladies_drive.api.schemas import dispatch_payload, ride_payload
from ladies_drive.config import settings
from ladies_drive.domain.dispatch import DispatchView
from ladies_drive.domain.entities import Location, PassengerSnapshot, Place, RideRequest
from ladies_drive.infrastructure.memory_store import InMemoryDocumentStore

from tests.conftest import CITY, DRIVER_DOCUMENTS

RIDE_BODY = {
    "pickup": {"label": "Maarif", "lat": 33.5808, "lng": -7.6326},
    "destination": {"label": "Ain Diab", "lat": 33.5920, "lng": -7.6700},
    "service_class": "Ladies Drive",
    "price": 18.50,
}


@pytest_asyncio.fixture
async def client():
    """AsyncClient backed by an in-memory document store."""
    limiter.reset()
    app = create_app(store=InMemoryDocumentStore(max_attempts=20))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _passenger(client: AsyncClient, name: str = "Salma") -> dict:
    resp = await client.post("/api/v1/users", json={"name": name, "city": CITY})
    assert resp.status_code == 201
    return resp.json()


async def _driver(client: AsyncClient, name: str = "Khadija", city: str = CITY) -> dict:
    resp = await client.post(
        "/api/v1/users",
        json={
            "name": name,
            "role": "DRIVER",
            "city": city,
            "phone_number": "+212600000001",
            "vehicle": {"make": "Dacia", "model": "Logan", "plate_number": "12345-A-6"},
        },
    )
    assert resp.status_code == 201
    driver = resp.json()
    resp = await client.post(
        f"/api/v1/drivers/{driver['id']}/application",
        json={"documents": DRIVER_DOCUMENTS},
    )
    assert resp.status_code == 200
    resp = await client.post(f"/api/v1/admin/drivers/{driver['id']}/approve")
    assert resp.status_code == 200
    resp = await client.patch(
        f"/api/v1/drivers/{driver['id']}/availability", json={"status": "AVAILABLE"}
    )
    assert resp.status_code == 200
    return resp.json()


async def _ride(client: AsyncClient, passenger: dict, **extra) -> dict:
    resp = await client.post(
        "/api/v1/rides", json={**RIDE_BODY, "passenger_id": passenger["id"], **extra}
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_register_driver_starts_offline(client: AsyncClient):
    resp = await client.post(
        "/api/v1/users", json={"name": "Hajar", "role": "DRIVER", "city": CITY}
    )
    assert resp.status_code == 201
    assert resp.json()["availability"] == "OFFLINE"


@pytest.mark.asyncio
async def test_get_user_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/users/nobody")
    assert resp.status_code == 404
    assert resp.json()["error"] == "UserNotFound"


@pytest.mark.asyncio
async def test_create_ride_returns_201(client: AsyncClient):
    passenger = await _passenger(client)
    data = await _ride(client, passenger)
    assert data["status"] == "SEARCHING"
    assert data["price"] == 18.50
    assert data["service_class"] == "Ladies Drive"
    assert data["city"] == CITY
    assert data["passenger"]["id"] == passenger["id"]
    assert data["pickup"]["location"] == {"lat": 33.5808, "lng": -7.6326}
    assert data["driver"] is None


@pytest.mark.asyncio
async def test_create_ride_without_coordinates(client: AsyncClient):
    passenger = await _passenger(client)
    body = {**RIDE_BODY, "passenger_id": passenger["id"], "pickup": {"label": "Maarif"}}
    resp = await client.post("/api/v1/rides", json=body)
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidInput"


@pytest.mark.asyncio
async def test_create_ride_unknown_passenger(client: AsyncClient):
    resp = await client.post("/api/v1/rides", json={**RIDE_BODY, "passenger_id": "ghost"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_get_ride_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/rides/missing")
    assert resp.status_code == 404
    assert resp.json()["error"] == "RideNotFound"


@pytest.mark.asyncio
async def test_dispatch_view_and_exclude(client: AsyncClient):
    passenger = await _passenger(client)
    driver = await _driver(client)
    first = await _ride(client, passenger)
    second = await _ride(client, passenger)

    resp = await client.get(f"/api/v1/drivers/{driver['id']}/requests")
    assert resp.status_code == 200
    ids = {r["id"] for r in resp.json()["candidates"]}
    assert ids == {first["id"], second["id"]}
    assert resp.json()["active_ride"] is None

    resp = await client.get(
        f"/api/v1/drivers/{driver['id']}/requests", params={"exclude": [first["id"]]}
    )
    assert [r["id"] for r in resp.json()["candidates"]] == [second["id"]]


@pytest.mark.asyncio
async def test_full_ride_flow(client: AsyncClient):
    passenger = await _passenger(client)
    d1 = await _driver(client, "Khadija")
    d2 = await _driver(client, "Fatima")
    ride = await _ride(client, passenger)

    resp = await client.post(f"/api/v1/rides/{ride['id']}/accept", json={"driver_id": d1["id"]})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACCEPTED"
    assert resp.json()["driver"]["id"] == d1["id"]
    assert resp.json()["driver"]["vehicle"]["make"] == "Dacia"

    resp = await client.post(f"/api/v1/rides/{ride['id']}/accept", json={"driver_id": d2["id"]})
    assert resp.status_code == 409
    assert resp.json()["error"] == "AlreadyTaken"

    view = (await client.get(f"/api/v1/drivers/{d1['id']}/requests")).json()
    assert view["active_ride"]["id"] == ride["id"]

    for status in ("ARRIVED", "IN_PROGRESS"):
        resp = await client.patch(
            f"/api/v1/rides/{ride['id']}/status", json={"status": status}
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == status

    resp = await client.patch(f"/api/v1/rides/{ride['id']}/complete")
    assert resp.status_code == 200
    assert resp.json()["status"] == "COMPLETED"

    user = (await client.get(f"/api/v1/users/{passenger['id']}")).json()
    assert user["completed_trips"] == 1
    driver = (await client.get(f"/api/v1/users/{d1['id']}")).json()
    assert driver["completed_trips"] == 1
    assert driver["availability"] == "AVAILABLE"
    assert driver["active_ride_id"] is None

    resp = await client.post(
        f"/api/v1/rides/{ride['id']}/rating",
        json={"rater_id": passenger["id"], "rating": 5},
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "skipped": False,
        "user_id": d1["id"],
        "rating": 5.0,
        "rating_count": 1,
    }


@pytest.mark.asyncio
async def test_rating_validation_and_skip(client: AsyncClient):
    passenger = await _passenger(client)
    driver = await _driver(client)
    ride = await _ride(client, passenger)
    await client.post(f"/api/v1/rides/{ride['id']}/accept", json={"driver_id": driver["id"]})

    # not completed yet
    resp = await client.post(
        f"/api/v1/rides/{ride['id']}/rating",
        json={"rater_id": passenger["id"], "rating": 5},
    )
    assert resp.status_code == 409

    for status in ("ARRIVED", "IN_PROGRESS", "COMPLETED"):
        await client.patch(f"/api/v1/rides/{ride['id']}/status", json={"status": status})

    resp = await client.post(
        f"/api/v1/rides/{ride['id']}/rating",
        json={"rater_id": driver["id"], "rating": 6},
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidRating"

    resp = await client.post(
        f"/api/v1/rides/{ride['id']}/rating",
        json={"rater_id": driver["id"], "rating": None},
    )
    assert resp.status_code == 200
    assert resp.json()["skipped"] is True

    resp = await client.post(
        f"/api/v1/rides/{ride['id']}/rating",
        json={"rater_id": "stranger", "rating": 3},
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_cancel_searching_ride(client: AsyncClient):
    passenger = await _passenger(client)
    ride = await _ride(client, passenger)
    resp = await client.patch(
        f"/api/v1/rides/{ride['id']}/cancel", json={"reason": "Plans changed"}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"
    assert resp.json()["cancel_reason"] == "Plans changed"


@pytest.mark.asyncio
async def test_cancel_already_cancelled_ride_fails(client: AsyncClient):
    passenger = await _passenger(client)
    ride = await _ride(client, passenger)
    await client.patch(f"/api/v1/rides/{ride['id']}/cancel")
    resp = await client.patch(f"/api/v1/rides/{ride['id']}/cancel")
    assert resp.status_code == 409
    assert resp.json()["error"] == "InvalidTransition"


@pytest.mark.asyncio
async def test_busy_driver_gets_409(client: AsyncClient):
    passenger = await _passenger(client)
    driver = await _driver(client)
    first = await _ride(client, passenger)
    second = await _ride(client, passenger)
    await client.post(f"/api/v1/rides/{first['id']}/accept", json={"driver_id": driver["id"]})

    resp = await client.post(
        f"/api/v1/rides/{second['id']}/accept", json={"driver_id": driver["id"]}
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "DriverBusy"


@pytest.mark.asyncio
async def test_passenger_cannot_accept(client: AsyncClient):
    passenger = await _passenger(client)
    ride = await _ride(client, passenger)
    resp = await client.post(
        f"/api/v1/rides/{ride['id']}/accept", json={"driver_id": passenger["id"]}
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_available_drivers_by_city(client: AsyncClient):
    driver = await _driver(client)
    await _driver(client, "Hajar", city="Rabat")

    resp = await client.get("/api/v1/drivers/available", params={"city": CITY})
    assert resp.status_code == 200
    assert [d["id"] for d in resp.json()] == [driver["id"]]


@pytest.mark.asyncio
async def test_driver_cannot_set_busy(client: AsyncClient):
    driver = await _driver(client)
    resp = await client.patch(
        f"/api/v1/drivers/{driver['id']}/availability", json={"status": "BUSY"}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_location_update(client: AsyncClient):
    driver = await _driver(client)
    resp = await client.patch(
        f"/api/v1/drivers/{driver['id']}/location", json={"lat": 33.57, "lng": -7.59}
    )
    assert resp.status_code == 200
    assert resp.json()["current_location"] == {"lat": 33.57, "lng": -7.59}


@pytest.mark.asyncio
async def test_admin_lists(client: AsyncClient):
    passenger = await _passenger(client)
    await _driver(client)
    ride = await _ride(client, passenger)
    await client.patch(f"/api/v1/rides/{ride['id']}/cancel")
    await _ride(client, passenger)

    resp = await client.get("/api/v1/admin/rides", params={"status": "SEARCHING"})
    assert resp.status_code == 200
    assert len(resp.json()) == 1

    resp = await client.get("/api/v1/admin/users", params={"role": "DRIVER"})
    assert [u["name"] for u in resp.json()] == ["Khadija"]


# ── Driver verification ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unverified_driver_cannot_go_online(client: AsyncClient):
    resp = await client.post(
        "/api/v1/users", json={"name": "Hajar", "role": "DRIVER", "city": CITY}
    )
    driver = resp.json()
    assert driver["verification_status"] == "UNVERIFIED"
    assert driver["documents"] == {}

    resp = await client.patch(
        f"/api/v1/drivers/{driver['id']}/availability", json={"status": "AVAILABLE"}
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "NotEligible"


@pytest.mark.asyncio
async def test_application_requires_every_document(client: AsyncClient):
    resp = await client.post(
        "/api/v1/users", json={"name": "Hajar", "role": "DRIVER", "city": CITY}
    )
    driver_id = resp.json()["id"]
    documents = {k: v for k, v in DRIVER_DOCUMENTS.items() if k != "insuranceUrl"}

    resp = await client.post(
        f"/api/v1/drivers/{driver_id}/application", json={"documents": documents}
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidInput"
    assert "insuranceUrl" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_admin_reviews_pending_drivers(client: AsyncClient):
    verified = await _driver(client)
    resp = await client.post(
        "/api/v1/users", json={"name": "Hajar", "role": "DRIVER", "city": CITY}
    )
    applicant = resp.json()
    resp = await client.post(
        f"/api/v1/drivers/{applicant['id']}/application",
        json={"documents": DRIVER_DOCUMENTS},
    )
    assert resp.json()["verification_status"] == "PENDING"
    assert resp.json()["documents"] == DRIVER_DOCUMENTS

    resp = await client.get(
        "/api/v1/admin/drivers", params={"verification": "PENDING"}
    )
    assert resp.status_code == 200
    assert [d["id"] for d in resp.json()] == [applicant["id"]]

    resp = await client.get(
        "/api/v1/admin/drivers", params={"verification": "VERIFIED"}
    )
    assert [d["id"] for d in resp.json()] == [verified["id"]]


@pytest.mark.asyncio
async def test_rejected_driver_is_taken_offline(client: AsyncClient):
    driver = await _driver(client)

    resp = await client.post(f"/api/v1/admin/drivers/{driver['id']}/reject")
    assert resp.status_code == 200
    assert resp.json()["verification_status"] == "REJECTED"
    assert resp.json()["availability"] == "OFFLINE"

    resp = await client.patch(
        f"/api/v1/drivers/{driver['id']}/availability", json={"status": "AVAILABLE"}
    )
    assert resp.status_code == 403

    resp = await client.get("/api/v1/drivers/available", params={"city": CITY})
    assert resp.json() == []


@pytest.mark.asyncio
async def test_approve_unknown_driver(client: AsyncClient):
    resp = await client.post("/api/v1/admin/drivers/nobody/approve")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_second_rating_of_same_ride_gets_409(client: AsyncClient):
    passenger = await _passenger(client)
    driver = await _driver(client)
    ride = await _ride(client, passenger)
    await client.post(f"/api/v1/rides/{ride['id']}/accept", json={"driver_id": driver["id"]})
    for status in ("ARRIVED", "IN_PROGRESS", "COMPLETED"):
        await client.patch(f"/api/v1/rides/{ride['id']}/status", json={"status": status})

    body = {"rater_id": passenger["id"], "rating": 4}
    resp = await client.post(f"/api/v1/rides/{ride['id']}/rating", json=body)
    assert resp.status_code == 200
    resp = await client.post(f"/api/v1/rides/{ride['id']}/rating", json=body)
    assert resp.status_code == 409
    assert resp.json()["error"] == "AlreadyRated"

    rated = (await client.get(f"/api/v1/users/{driver['id']}")).json()
    assert rated["rating_count"] == 1
    assert rated["rating"] == 4.0


# ── WebSocket payloads ────────────────────────────────────────────────


def test_ride_payload_is_json_ready():
    ride = RideRequest(
        id="r1",
        passenger=PassengerSnapshot(id="p1", name="Salma"),
        pickup=Place("Maarif", Location(33.5808, -7.6326)),
        destination=Place("Ain Diab", Location(33.5920, -7.6700)),
        price=18.5,
        city=CITY,
        created_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc),
    )
    payload = ride_payload(ride)
    assert payload["type"] == "ride"
    assert payload["ride"]["status"] == "SEARCHING"
    assert payload["ride"]["service_class"] == "Ladies Drive"
    assert payload["ride"]["created_at"].startswith("2026-03-01T09:00:00")


def test_dispatch_payload_lists_candidates():
    ride = RideRequest(id="r1", pickup=Place("Maarif"), destination=Place("Ain Diab"))
    payload = dispatch_payload(DispatchView(driver_id="d1", candidates=(ride,)))
    assert payload["type"] == "dispatch"
    assert payload["view"]["active_ride"] is None
    assert [r["id"] for r in payload["view"]["candidates"]] == ["r1"]


# ── WebSocket endpoints ───────────────────────────────────────────────


@pytest.fixture
def live_client(monkeypatch):
    """Synchronous TestClient; sockets and HTTP calls share its event loop."""
    monkeypatch.setattr(settings, "expiry_worker_enabled", False)
    limiter.reset()
    app = create_app(store=InMemoryDocumentStore(max_attempts=20))
    with TestClient(app) as tc:
        yield tc


def _sync_passenger(tc: TestClient) -> dict:
    resp = tc.post("/api/v1/users", json={"name": "Salma", "city": CITY})
    assert resp.status_code == 201
    return resp.json()


def _sync_driver(tc: TestClient, name: str = "Khadija") -> dict:
    resp = tc.post("/api/v1/users", json={"name": name, "role": "DRIVER", "city": CITY})
    assert resp.status_code == 201
    driver_id = resp.json()["id"]
    tc.post(f"/api/v1/drivers/{driver_id}/application", json={"documents": DRIVER_DOCUMENTS})
    tc.post(f"/api/v1/admin/drivers/{driver_id}/approve")
    resp = tc.patch(
        f"/api/v1/drivers/{driver_id}/availability", json={"status": "AVAILABLE"}
    )
    assert resp.status_code == 200
    return resp.json()


def _sync_ride(tc: TestClient, passenger: dict) -> dict:
    resp = tc.post("/api/v1/rides", json={**RIDE_BODY, "passenger_id": passenger["id"]})
    assert resp.status_code == 201
    return resp.json()


def _candidate_ids(frame: dict) -> list[str]:
    assert frame["type"] == "dispatch"
    return [r["id"] for r in frame["view"]["candidates"]]


def test_dispatch_socket_pushes_new_requests_and_skips(live_client: TestClient):
    passenger = _sync_passenger(live_client)
    driver = _sync_driver(live_client)
    first = _sync_ride(live_client, passenger)

    with live_client.websocket_connect(
        f"/api/v1/live/drivers/{driver['id']}/requests"
    ) as ws:
        assert _candidate_ids(ws.receive_json()) == [first["id"]]

        second = _sync_ride(live_client, passenger)
        assert set(_candidate_ids(ws.receive_json())) == {first["id"], second["id"]}

        ws.send_json({"action": "skip", "ride_id": first["id"]})
        assert _candidate_ids(ws.receive_json()) == [second["id"]]


def test_dispatch_socket_shows_accepted_ride(live_client: TestClient):
    passenger = _sync_passenger(live_client)
    driver = _sync_driver(live_client)
    ride = _sync_ride(live_client, passenger)

    with live_client.websocket_connect(
        f"/api/v1/live/drivers/{driver['id']}/requests"
    ) as ws:
        assert _candidate_ids(ws.receive_json()) == [ride["id"]]

        live_client.post(f"/api/v1/rides/{ride['id']}/accept", json={"driver_id": driver["id"]})
        frame = ws.receive_json()
        assert frame["view"]["active_ride"]["id"] == ride["id"]
        assert frame["view"]["candidates"] == []


def test_ride_socket_pushes_acceptance(live_client: TestClient):
    passenger = _sync_passenger(live_client)
    driver = _sync_driver(live_client)
    ride = _sync_ride(live_client, passenger)

    with live_client.websocket_connect(f"/api/v1/live/rides/{ride['id']}") as ws:
        frame = ws.receive_json()
        assert frame["type"] == "ride"
        assert frame["ride"]["status"] == "SEARCHING"

        resp = live_client.post(
            f"/api/v1/rides/{ride['id']}/accept", json={"driver_id": driver["id"]}
        )
        assert resp.status_code == 200

        frame = ws.receive_json()
        assert frame["ride"]["status"] == "ACCEPTED"
        assert frame["ride"]["driver"]["id"] == driver["id"]


def test_ride_socket_unknown_ride_closes_with_policy_violation(live_client: TestClient):
    with live_client.websocket_connect("/api/v1/live/rides/missing") as ws:
        frame = ws.receive_json()
        assert frame["type"] == "error"
        assert frame["error"] == "RideNotFound"
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
        assert exc_info.value.code == 1008


def test_available_drivers_socket_follows_availability(live_client: TestClient):
    driver = _sync_driver(live_client)

    with live_client.websocket_connect(f"/api/v1/live/drivers/available?city={CITY}") as ws:
        frame = ws.receive_json()
        assert frame["type"] == "drivers"
        assert [d["id"] for d in frame["drivers"]] == [driver["id"]]

        live_client.patch(
            f"/api/v1/drivers/{driver['id']}/availability", json={"status": "OFFLINE"}
        )
        assert ws.receive_json()["drivers"] == []
