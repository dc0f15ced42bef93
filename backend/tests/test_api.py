"""HTTP-level tests against the FastAPI app with services wired to SQLite."""

import uuid

import httpx
import pytest

from shuttle.api import routes, shuttles, ws
from shuttle.core.broadcaster import Broadcaster
from shuttle.core.order_manager import StudentOrderManager
from shuttle.core.route_engine import RouteAssignmentEngine
from shuttle.core.shuttle_tracker import ShuttleTracker
from shuttle.main import app

pytestmark = pytest.mark.anyio


@pytest.fixture
async def client(fleet, monkeypatch):
    monkeypatch.setattr(routes, "engine", RouteAssignmentEngine(fleet.session_factory))
    monkeypatch.setattr(routes, "order_manager", StudentOrderManager(fleet.session_factory))
    monkeypatch.setattr(shuttles, "tracker", ShuttleTracker(fleet.session_factory, Broadcaster()))

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def admin_headers(fleet) -> dict:
    return {"X-User-Name": "admin", "X-School-UUID": str(fleet.school)}


def route_body(fleet, driver, students, name="Morning") -> dict:
    return {
        "route_name": name,
        "route_description": "",
        "route_assignment": [{
            "driver_uuid": str(driver),
            "students": [
                {"student_uuid": str(s), "student_order": str(i + 1)}
                for i, s in enumerate(students)
            ],
        }],
    }


async def create_route(client, fleet, driver, students) -> uuid.UUID:
    resp = await client.post(
        "/api/routes", json=route_body(fleet, driver, students), headers=admin_headers(fleet),
    )
    assert resp.status_code == 201, resp.text
    return uuid.UUID(resp.json()["data"]["route_uuid"])


async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_create_and_get_route(client, fleet):
    route_uuid = await create_route(client, fleet, fleet.small_driver, fleet.students[:2])

    resp = await client.get(f"/api/routes/{route_uuid}", headers=admin_headers(fleet))
    assert resp.status_code == 200
    body = resp.json()
    assert body["route_name"] == "Morning"
    students = body["route_assignment"][0]["students"]
    assert [s["student_order"] for s in students] == [1, 2]


async def test_capacity_exceeded_reports_seat_count(client, fleet):
    resp = await client.post(
        "/api/routes",
        json=route_body(fleet, fleet.small_driver, fleet.students[:3]),
        headers=admin_headers(fleet),
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["kind"] == "CapacityExceeded"
    assert body["seat_count"] == 2
    assert await fleet.route_count() == 0


async def test_duplicate_student_rejected(client, fleet):
    body = route_body(fleet, fleet.big_driver, [fleet.students[0], fleet.students[0]])
    resp = await client.post("/api/routes", json=body, headers=admin_headers(fleet))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Same student not permitted"


async def test_move_student_order(client, fleet):
    route_uuid = await create_route(client, fleet, fleet.big_driver, fleet.students[:4])
    student = fleet.students[3]

    resp = await client.patch(
        f"/api/routes/students/{student}/order",
        json={"new_order": 1},
        headers=admin_headers(fleet),
    )
    assert resp.status_code == 200
    assert resp.json()["data"] == {"student_order": 1}

    orders = await fleet.orders(route_uuid)
    assert [orders[s] for s in fleet.students[:4]] == [2, 3, 4, 1]


async def test_update_route_via_put(client, fleet):
    route_uuid = await create_route(client, fleet, fleet.small_driver, fleet.students[:2])

    resp = await client.put(
        f"/api/routes/{route_uuid}",
        json={
            "driver_uuid": str(fleet.small_driver),
            "route_name": "Evening",
            "deletedStudents": [{"student_uuid": str(fleet.students[0])}],
            "added": [{"student_uuid": str(fleet.students[5]), "student_order": ""}],
        },
        headers=admin_headers(fleet),
    )
    assert resp.status_code == 200, resp.text

    orders = await fleet.orders(route_uuid)
    assert orders == {fleet.students[1]: 2, fleet.students[5]: 3}


async def test_delete_then_not_found(client, fleet):
    route_uuid = await create_route(client, fleet, fleet.small_driver, fleet.students[:1])

    resp = await client.delete(f"/api/routes/{route_uuid}", headers=admin_headers(fleet))
    assert resp.status_code == 200

    resp = await client.get(f"/api/routes/{route_uuid}", headers=admin_headers(fleet))
    assert resp.status_code == 404
    assert resp.json()["kind"] == "RouteNotFound"


async def test_list_routes(client, fleet):
    await create_route(client, fleet, fleet.small_driver, fleet.students[:1])

    resp = await client.get("/api/routes", params={"limit": 5}, headers=admin_headers(fleet))
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["data"]) == 1
    assert body["meta"]["showing"] == "Showing 1-1 of 1"


async def test_list_route_assignments(client, fleet):
    await create_route(client, fleet, fleet.small_driver, fleet.students[:2])

    resp = await client.get("/api/routes/assignments", params={"limit": 5})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["meta"]["total_items"] == 1
    [block] = body["data"][0]["route_assignment"]
    assert block["driver_uuid"] == str(fleet.small_driver)
    assert len(block["students"]) == 2


async def test_missing_school_header(client, fleet):
    resp = await client.get("/api/routes")
    assert resp.status_code == 400


async def test_driver_endpoints(client, fleet):
    await create_route(client, fleet, fleet.big_driver, fleet.students[:2])
    headers = {"X-User-UUID": str(fleet.big_driver), "X-School-UUID": str(fleet.school)}

    resp = await client.get("/api/routes/driver", headers=headers)
    assert resp.status_code == 200
    assert [s["student_uuid"] for s in resp.json()] == [str(s) for s in fleet.students[:2]]

    resp = await client.get(
        "/api/routes/driver/distance", params={"lat": -7.77, "lon": 110.37}, headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["total_distance_km"] > 0

    resp = await client.get(
        "/api/routes/driver/distance", params={"lat": 120.0, "lon": 110.37}, headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["kind"] == "InvalidCoordinate"


async def test_shuttle_status_flow(client, fleet):
    await create_route(client, fleet, fleet.big_driver, fleet.students[:1])
    student = fleet.students[0]

    resp = await client.put(
        f"/api/shuttles/students/{student}",
        json={"status": "at_school"},
        headers={"X-User-UUID": str(fleet.big_driver)},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "at_school"
    assert "device_token" not in resp.json()
    shuttle_uuid = resp.json()["shuttle_uuid"]

    resp = await client.get("/api/shuttles/parent", headers={"X-User-UUID": str(fleet.parent)})
    assert resp.status_code == 200
    statuses = {t["student_uuid"]: t["status"] for t in resp.json()}
    assert statuses == {str(fleet.students[0]): "at_school", str(fleet.students[1]): None}

    resp = await client.get(
        "/api/shuttles/parent/history", params={"limit": 5}, headers={"X-User-UUID": str(fleet.parent)},
    )
    assert resp.status_code == 200
    assert resp.json()["meta"]["showing"] == "Showing 1-1 of 1"

    resp = await client.get("/api/shuttles/driver", headers={"X-User-UUID": str(fleet.big_driver)})
    assert [r["shuttle_uuid"] for r in resp.json()] == [shuttle_uuid]

    resp = await client.get(f"/api/shuttles/{shuttle_uuid}", headers={"X-User-UUID": str(fleet.parent)})
    assert resp.status_code == 200
    assert resp.json()["status"] == "at_school"

    resp = await client.get(f"/api/shuttles/{shuttle_uuid}", headers={"X-User-UUID": str(uuid.uuid4())})
    assert resp.status_code == 404
    assert resp.json()["kind"] == "ShuttleNotFound"


async def test_service_not_ready(fleet, monkeypatch):
    monkeypatch.setattr(routes, "engine", None)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        resp = await c.get("/api/routes", headers=admin_headers(fleet))
    assert resp.status_code == 503


async def test_stream_filter_by_parent(fleet):
    event = {"type": "status", "parent_uuid": str(fleet.parent)}
    assert ws._for_parent(event, None)
    assert ws._for_parent(event, fleet.parent)
    assert not ws._for_parent(event, fleet.students[0])
