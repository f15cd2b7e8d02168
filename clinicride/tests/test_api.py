import asyncio
from datetime import datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from app import db
from app.main import app
from app.models import BookingStatus
from app.security import issue_token
from app.utils import utcnow


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch):
    monkeypatch.setattr(db, "AsyncSessionLocal", session_factory)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def auth(identity):
    return {"Authorization": f"Bearer {issue_token(identity.user_id, identity.role)}"}


def booking_body(world, **overrides):
    body = {
        "hospitalId": world.hospital.id,
        "pickupType": "HOSPITAL",
        "scheduledAt": (utcnow() + timedelta(hours=1)).isoformat(),
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_requests_without_token_are_unauthorized(client, world):
    res = await client.post("/booking", json=booking_body(world))
    assert res.status_code == 401

    res = await client.get("/booking/my", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401
    assert res.json() == {"error": "Invalid token"}


@pytest.mark.asyncio
async def test_token_cookie_is_accepted(client, world):
    client.cookies.set("token", issue_token(world.patient_id.user_id))
    res = await client.get("/booking/my")
    assert res.status_code == 200
    assert res.json() == {"bookings": []}


@pytest.mark.asyncio
async def test_home_pickup_validation_payload(client, world):
    res = await client.post("/booking", json=booking_body(world, pickupType="HOME"), headers=auth(world.patient_id))

    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "Validation failed"
    assert {"pickupLat", "pickupLng"} <= set(body["details"]["fieldErrors"])


@pytest.mark.asyncio
async def test_schema_errors_use_the_same_payload(client, world):
    res = await client.post(
        "/booking",
        json=booking_body(world, notes="x" * 501, pickupType="BOAT"),
        headers=auth(world.patient_id),
    )

    assert res.status_code == 400
    fields = res.json()["details"]["fieldErrors"]
    assert "notes" in fields
    assert "pickupType" in fields


@pytest.mark.asyncio
async def test_inactive_hospital_is_not_found(client, world):
    res = await client.post(
        "/booking", json=booking_body(world, hospitalId=world.closed_hospital.id), headers=auth(world.patient_id)
    )
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_pending_list_for_guardians_only(client, world, make_booking):
    later = await make_booking(scheduled_in=timedelta(hours=3))
    sooner = await make_booking(scheduled_in=timedelta(hours=1))

    res = await client.get("/booking/pending", headers=auth(world.g1_id))
    assert res.status_code == 200
    body = res.json()
    assert body["count"] == 2
    assert [b["id"] for b in body["bookings"]] == [sooner.id, later.id]
    assert body["bookings"][0]["patient"]["name"] == "Ravi Kumar"
    assert body["bookings"][0]["pickupLocation"] is None

    for caller in (world.patient_id, world.g4_id):
        res = await client.get("/booking/pending", headers=auth(caller))
        assert res.status_code == 403


@pytest.mark.asyncio
async def test_reject_keeps_booking_visible(client, world, make_booking):
    booking = await make_booking()

    res = await client.post(
        "/booking/respond", json={"bookingId": booking.id, "action": "REJECT"}, headers=auth(world.g1_id)
    )
    assert res.status_code == 200
    assert "rejected" in res.json()["message"]

    res = await client.get("/booking/pending", headers=auth(world.g1_id))
    assert [b["id"] for b in res.json()["bookings"]] == [booking.id]


@pytest.mark.asyncio
async def test_accepting_a_taken_booking_is_a_conflict(client, world, make_booking):
    taken = await make_booking(status=BookingStatus.ACCEPTED, guardian=world.g2)
    cancelled = await make_booking(status=BookingStatus.CANCELLED)

    for booking_id in (taken.id, cancelled.id, "missing"):
        res = await client.post(
            "/booking/respond", json={"bookingId": booking_id, "action": "ACCEPT"}, headers=auth(world.g1_id)
        )
        assert res.status_code == 409
        assert res.json() == {"error": "Booking not found or already assigned to another guardian"}


@pytest.mark.asyncio
async def test_accept_response_times_are_utc(client, world, make_booking):
    booking = await make_booking()

    res = await client.post(
        "/booking/respond", json={"bookingId": booking.id, "action": "ACCEPT"}, headers=auth(world.g1_id)
    )

    assert res.status_code == 200
    body = res.json()
    for value in (body["pickupDetails"]["scheduledAt"], body["booking"]["scheduledAt"]):
        assert datetime.fromisoformat(value.replace("Z", "+00:00")).utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_unknown_booking_detail_is_forbidden(client, world):
    res = await client.get("/booking/does-not-exist", headers=auth(world.patient_id))
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_my_bookings_needs_a_profile(client, world):
    res = await client.get("/booking/my", headers=auth(world.doctor_id))
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_trip_from_request_to_completion(client, world):
    # patient asks for a hospital pickup an hour from now
    res = await client.post("/booking", json=booking_body(world), headers=auth(world.patient_id))
    assert res.status_code == 201
    created = res.json()
    booking_id = created["booking"]["id"]
    assert created["booking"]["status"] == "REQUESTED"
    assert created["booking"]["guardianId"] is None
    assert created["eligibleGuardiansCount"] == 2

    # both eligible guardians race for it
    guardians = {world.g1.id: world.g1_id, world.g2.id: world.g2_id}
    responses = await asyncio.gather(
        *(
            client.post("/booking/respond", json={"bookingId": booking_id, "action": "ACCEPT"}, headers=auth(i))
            for i in guardians.values()
        )
    )
    codes = sorted(r.status_code for r in responses)
    assert codes == [200, 409]

    won = next(r for r in responses if r.status_code == 200).json()
    winner_id = won["booking"]["guardianId"]
    winner = guardians[winner_id]
    loser = next(i for gid, i in guardians.items() if gid != winner_id)
    assert won["patientContact"] == {"name": "Ravi Kumar", "mobile": "9000000001", "emergencyPhone": "9000000099"}
    assert won["pickupDetails"]["type"] == "HOSPITAL"
    assert won["pickupDetails"]["location"] is None

    res = await client.get(f"/booking/{booking_id}", headers=auth(world.patient_id))
    assert res.json()["booking"]["status"] == "ACCEPTED"
    assert res.json()["booking"]["guardianId"] == winner_id

    res = await client.get(f"/booking/{booking_id}", headers=auth(loser))
    assert res.status_code == 403

    res = await client.patch(f"/booking/{booking_id}/status", json={"status": "IN_PROGRESS"}, headers=auth(winner))
    assert res.status_code == 200
    assert "started" in res.json()["message"]

    res = await client.patch(f"/booking/{booking_id}/status", json={"status": "IN_PROGRESS"}, headers=auth(loser))
    assert res.status_code == 403

    res = await client.patch(f"/booking/{booking_id}/status", json={"status": "COMPLETED"}, headers=auth(winner))
    assert res.status_code == 200
    assert res.json()["booking"]["status"] == "COMPLETED"

    res = await client.patch(f"/booking/{booking_id}/status", json={"status": "CANCELLED"}, headers=auth(winner))
    assert res.status_code == 400
    assert res.json() == {
        "error": "Cannot transition from COMPLETED to CANCELLED",
        "from": "COMPLETED",
        "to": "CANCELLED",
    }

    res = await client.get("/booking/my", headers=auth(winner))
    assert [b["id"] for b in res.json()["bookings"]] == [booking_id]
