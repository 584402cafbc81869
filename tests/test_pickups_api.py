import base64

import pytest
from httpx import AsyncClient

from conftest import FakeProvider
from wastelink.core.events import EventBus
from wastelink.deps import get_notification_store, get_pickup_service
from wastelink.main import app
from wastelink.repos.inmemory import InMemoryNotificationStore, InMemoryPickupRepo
from wastelink.services.contamination import ContaminationPipeline
from wastelink.services.notifications import NotificationSubscriber
from wastelink.services.pickups import PickupService

pytestmark = pytest.mark.anyio

HOUSEHOLD = {"X-User-Id": "house-1", "X-User-Role": "household"}
DRIVER = {"X-User-Id": "driver-1", "X-User-Role": "driver"}
OTHER_DRIVER = {"X-User-Id": "driver-2", "X-User-Role": "driver"}
RECYCLER = {"X-User-Id": "recycler-1", "X-User-Role": "recycler"}
COUNCIL = {"X-User-Id": "council-1", "X-User-Role": "council"}

@pytest.fixture
def notification_store():
    return InMemoryNotificationStore()

@pytest.fixture
def api_service(notification_store):
    bus = EventBus()
    bus.subscribe(NotificationSubscriber(notification_store))
    svc = PickupService(InMemoryPickupRepo(), ContaminationPipeline(FakeProvider(score=8), bus), bus)
    app.dependency_overrides[get_pickup_service] = lambda: svc
    app.dependency_overrides[get_notification_store] = lambda: notification_store
    yield svc
    app.dependency_overrides.pop(get_pickup_service, None)
    app.dependency_overrides.pop(get_notification_store, None)

def _payload(**kw):
    body = {
        "waste_type": "plastic",
        "estimated_weight_kg": 5,
        "address": "12 Market St",
        "lat": -1.2921,
        "lng": 36.8219,
        "image": {
            "public_id": "pickups/abc",
            "secure_url": "https://img.example/abc.jpg",
            "content_b64": base64.b64encode(b"\xff\xd8fake-jpeg").decode(),
            "filename": "abc.jpg",
        },
    }
    body.update(kw)
    return body

async def _create(ac: AsyncClient) -> str:
    r = await ac.post("/pickups", headers=HOUSEHOLD, json=_payload())
    assert r.status_code == 201, r.text
    return r.json()["pickup"]["id"]

async def test_health(test_client: AsyncClient):
    r = await test_client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}

async def test_pickup_flow_over_http(test_client: AsyncClient, api_service):
    r = await test_client.post("/pickups", headers=HOUSEHOLD, json=_payload())
    assert r.status_code == 201, r.text
    created = r.json()["pickup"]
    assert created["status"] == "pending"
    assert created["contamination_label"] == "High"
    assert created["contamination_score"] == pytest.approx(7 / 9)
    assert created["geom"]["coordinates"] == [36.8219, -1.2921]
    pid = created["id"]

    r = await test_client.get("/pickups/available", headers=DRIVER)
    assert [p["id"] for p in r.json()] == [pid]

    r = await test_client.patch(f"/pickups/{pid}/claim", headers=DRIVER)
    assert r.status_code == 200, r.text
    assert r.json()["pickup"]["assigned_to"] == "driver-1"

    r = await test_client.patch(f"/pickups/{pid}/picked-up", headers=DRIVER)
    assert r.status_code == 200, r.text

    r = await test_client.patch(f"/pickups/{pid}/assign-facility", headers=COUNCIL, json={"facility_id": "fac-1"})
    assert r.status_code == 200, r.text
    assert r.json()["pickup"]["status"] == "picked_up"

    r = await test_client.patch(f"/pickups/{pid}/completed", headers=DRIVER, json={"actual_weight_kg": 4.8})
    assert r.status_code == 200, r.text

    r = await test_client.patch(f"/pickups/{pid}/receive", headers=RECYCLER, json={"received_weight_kg": 4.7})
    assert r.status_code == 200, r.text

    r = await test_client.get(f"/pickups/{pid}")
    data = r.json()
    assert data["status"] == "processed"
    assert (data["estimated_weight_kg"], data["actual_weight_kg"], data["received_weight_kg"]) == (5, 4.8, 4.7)
    assert data["facility_id"] == "fac-1"

async def test_invalid_transition_is_conflict(test_client: AsyncClient, api_service):
    pid = await _create(test_client)
    r = await test_client.patch(f"/pickups/{pid}/reject", headers=RECYCLER, json={"reason": "mixed"})
    assert r.status_code == 409
    body = r.json()
    assert body["error"] == "InvalidTransition"
    assert body["current"] == "pending"
    assert body["requested"] == "rejected"

async def test_second_claim_is_not_found(test_client: AsyncClient, api_service):
    pid = await _create(test_client)
    assert (await test_client.patch(f"/pickups/{pid}/claim", headers=DRIVER)).status_code == 200
    r = await test_client.patch(f"/pickups/{pid}/claim", headers=OTHER_DRIVER)
    assert r.status_code == 404

async def test_wrong_role_is_forbidden(test_client: AsyncClient, api_service):
    pid = await _create(test_client)
    r = await test_client.patch(f"/pickups/{pid}/claim", headers=HOUSEHOLD)
    assert r.status_code == 403
    assert r.json()["error"] == "Forbidden"

async def test_missing_image_is_bad_request(test_client: AsyncClient, api_service):
    r = await test_client.post("/pickups", headers=HOUSEHOLD, json=_payload(image=None))
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationError"
    assert await api_service.list_all() == []

async def test_identity_headers(test_client: AsyncClient, api_service):
    r = await test_client.post("/pickups", json=_payload())
    assert r.status_code == 422

    r = await test_client.post("/pickups", headers={"X-User-Id": "x", "X-User-Role": "wizard"}, json=_payload())
    assert r.status_code == 401

async def test_unknown_pickup(test_client: AsyncClient, api_service):
    r = await test_client.get("/pickups/nope")
    assert r.status_code == 404
    assert r.json()["error"] == "NotFound"

async def test_cancel_over_http(test_client: AsyncClient, api_service):
    pid = await _create(test_client)
    r = await test_client.patch(f"/pickups/{pid}/cancel", headers=HOUSEHOLD, json={"reason": "moved house"})
    assert r.status_code == 200, r.text
    assert r.json()["pickup"]["status"] == "cancelled"
    assert r.json()["pickup"]["cancellation_reason"] == "moved house"

async def test_notifications_feed(test_client: AsyncClient, api_service):
    pid = await _create(test_client)
    assert (await test_client.patch(f"/pickups/{pid}/claim", headers=DRIVER)).status_code == 200

    r = await test_client.get("/notifications", headers=HOUSEHOLD)
    assert r.status_code == 200, r.text
    types = [n["type"] for n in r.json()]
    assert sorted(types) == ["PICKUP_ASSIGNED", "PICKUP_CREATED"]
    assert all(n["pickup_id"] == pid for n in r.json())

    r = await test_client.get("/notifications", headers=DRIVER)
    assert [n["type"] for n in r.json()] == ["PICKUP_ASSIGNED_TO_YOU"]

    # score 8 crosses the alert threshold; only oversight roles see council alerts
    r = await test_client.get("/notifications", headers=COUNCIL)
    assert [n["type"] for n in r.json()] == ["HIGH_CONTAMINATION_WARNING"]

async def test_notifications_need_identity(test_client: AsyncClient, api_service):
    r = await test_client.get("/notifications")
    assert r.status_code == 422
