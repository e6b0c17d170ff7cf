# tests/test_routes.py
from datetime import timedelta

import httpx
import pytest

from medqueue.core.errors import UpstreamError
from medqueue.main import create_app
from tests._stubs import DOCTOR_ID, NOW, OTHER_PATIENT_ID, PATIENT_ID


@pytest.fixture
async def client(session_factory, identity, policy, clock):
    app = create_app(session_factory=session_factory, identity=identity, policy=policy, clock=clock)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _iso(minutes):
    return (NOW + timedelta(minutes=minutes)).isoformat()


async def _create(client, minutes, patient_id=PATIENT_ID, doctor_id=DOCTOR_ID):
    return await client.post(
        "/appointments/",
        json={"patient_id": patient_id, "doctor_id": doctor_id, "start_time": _iso(minutes)},
        headers={"Authorization": "Bearer patient-token"},
    )


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "ready"


async def test_create_and_fetch(client):
    response = await _create(client, 60)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "SCHEDULED"
    assert body["doctor_id"] == DOCTOR_ID

    fetched = await client.get(f"/appointments/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["id"]


async def test_conflict_is_409(client):
    await _create(client, 60)
    response = await _create(client, 75, patient_id=OTHER_PATIENT_ID)
    assert response.status_code == 409
    assert response.json() == {
        "error": "ConflictError",
        "detail": "The doctor already has an appointment in that time slot",
    }


async def test_past_start_is_400(client):
    response = await _create(client, -5)
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


async def test_unknown_appointment_is_404(client):
    response = await client.get("/appointments/0b0e2c8e-3d4c-4f1b-9a55-2f0b9f0b7e11")
    assert response.status_code == 404


async def test_identity_outage_is_502(client, identity):
    identity.fail_with = UpstreamError("Identity service unreachable while verifying the doctor")
    response = await _create(client, 60)
    assert response.status_code == 502


async def test_list_by_day(client):
    await _create(client, 60)
    await _create(client, 24 * 60)

    response = await client.get("/appointments/", params={"date": "2026-03-10"})
    assert response.status_code == 200
    assert len(response.json()) == 1


async def test_confirm_cancel_update(client):
    appointment_id = (await _create(client, 60)).json()["id"]

    confirmed = await client.patch(f"/appointments/{appointment_id}/confirm")
    assert confirmed.json()["status"] == "CONFIRMED"

    moved = await client.put(f"/appointments/{appointment_id}", json={"start_time": _iso(120)})
    assert moved.status_code == 200
    assert moved.json()["start_time"].startswith("2026-03-10T17:00:00")

    bad = await client.put(f"/appointments/{appointment_id}", json={"status": "LOST"})
    assert bad.status_code == 400

    cancelled = await client.patch(f"/appointments/{appointment_id}/cancel")
    assert cancelled.json()["status"] == "CANCELLED"
    again = await client.patch(f"/appointments/{appointment_id}/cancel")
    assert again.status_code == 409


async def test_confirm_outside_window_is_422(client):
    appointment_id = (await _create(client, 3 * 24 * 60)).json()["id"]
    response = await client.patch(f"/appointments/{appointment_id}/confirm")
    assert response.status_code == 422
    assert response.json()["error"] == "WindowError"


async def test_queue_flow(client):
    first = (await _create(client, 0)).json()["id"]
    second = (await _create(client, 30, patient_id=OTHER_PATIENT_ID)).json()["id"]

    joined = await client.post("/queue/join", json={"appointment_id": first})
    assert joined.status_code == 201
    assert joined.json()["ticket"]["queue_number"] == 1
    assert joined.json()["estimated_wait_time_minutes"] == 0

    second_ticket = (await client.post("/queue/join", json={"appointment_id": second})).json()["ticket"]

    current = await client.get(f"/queue/doctor/{DOCTOR_ID}/current")
    assert [t["queue_number"] for t in current.json()["queue"]] == [1, 2]

    called = await client.post("/queue/call-next", json={"doctor_id": DOCTOR_ID})
    assert called.status_code == 200
    assert called.json()["status"] == "CALLED"

    busy = await client.post("/queue/call-next", json={"doctor_id": DOCTOR_ID})
    assert busy.status_code == 409

    started = await client.put(f"/queue/ticket/{called.json()['id']}/start")
    assert started.json()["status"] == "IN_PROGRESS"
    completed = await client.put(f"/queue/ticket/{called.json()['id']}/complete")
    assert completed.json()["status"] == "COMPLETED"

    position = await client.get(f"/queue/ticket/{second_ticket['id']}/position")
    assert position.json()["position"] == 1
    assert position.json()["estimated_wait_time_minutes"] == 0

    appointment = await client.get(f"/appointments/{first}")
    assert appointment.json()["status"] == "COMPLETED"


async def test_join_too_early_is_422(client):
    appointment_id = (await _create(client, 90)).json()["id"]
    response = await client.post("/queue/join", json={"appointment_id": appointment_id})
    assert response.status_code == 422
    assert "Too early to check in" in response.json()["detail"]


async def test_empty_queue_is_404(client):
    response = await client.get(f"/queue/doctor/{DOCTOR_ID}/current")
    assert response.status_code == 404
